from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from decimal import Decimal

from dealdesk.domain.models import Deal, FollowUp, Reminder, UnifiedTask
from dealdesk.domain.moment import REFERENCE_TZ, ScheduleMoment, today
from dealdesk.domain.stages import ACTIVE_STATUSES, TaskSource


@dataclass(frozen=True)
class TaskTriage:
    overdue: list[UnifiedTask] = field(default_factory=list)
    today: list[UnifiedTask] = field(default_factory=list)
    upcoming: list[UnifiedTask] = field(default_factory=list)
    value_at_risk: Decimal = Decimal("0")

    @property
    def total(self) -> int:
        return len(self.overdue) + len(self.today) + len(self.upcoming)

    def all_tasks(self) -> list[UnifiedTask]:
        return [*self.overdue, *self.today, *self.upcoming]


@dataclass(frozen=True)
class LoggedFollowUp:
    deal_id: str
    client_id: str
    title: str
    follow_up: FollowUp


def classify_tasks(
    deals: Iterable[Deal],
    reminders: Iterable[Reminder],
    *,
    now: datetime | None = None,
    tz: tzinfo = REFERENCE_TZ,
) -> TaskTriage:
    """Split scheduled follow-ups and open reminders into overdue/today/upcoming.

    Buckets are compared at calendar-date granularity in ``tz`` and sorted by
    the full moment.
    """
    reference = today(now, tz)
    tasks: list[UnifiedTask] = []
    for deal in deals:
        if deal.status not in ACTIVE_STATUSES or deal.next_follow_up is None:
            continue
        tasks.append(
            _task(
                source_id=deal.deal_id,
                source_kind=TaskSource.FOLLOW_UP,
                moment=deal.next_follow_up,
                title=deal.title,
                reference=reference,
                tz=tz,
                client_id=deal.client_id,
                value=deal.value,
            )
        )
    for reminder in reminders:
        if reminder.is_dismissed or reminder.is_completed:
            continue
        tasks.append(
            _task(
                source_id=reminder.reminder_id,
                source_kind=TaskSource.REMINDER,
                moment=reminder.moment,
                title=reminder.title,
                reference=reference,
                tz=tz,
            )
        )

    overdue = [t for t in tasks if t.is_overdue]
    due_today = [t for t in tasks if t.is_today]
    upcoming = [t for t in tasks if t.is_upcoming]

    def by_moment(task: UnifiedTask) -> datetime:
        return task.moment.to_instant(tz)

    at_risk = sum(
        (t.value for t in (*overdue, *due_today) if t.value is not None),
        Decimal("0"),
    )
    return TaskTriage(
        overdue=sorted(overdue, key=by_moment),
        today=sorted(due_today, key=by_moment),
        upcoming=sorted(upcoming, key=by_moment),
        value_at_risk=at_risk,
    )


def followups_logged_on(
    deals: Iterable[Deal], day: date, tz: tzinfo = REFERENCE_TZ
) -> list[LoggedFollowUp]:
    logged = [
        LoggedFollowUp(
            deal_id=deal.deal_id,
            client_id=deal.client_id,
            title=deal.title,
            follow_up=follow_up,
        )
        for deal in deals
        for follow_up in deal.follow_ups
        if follow_up.moment.to_date(tz) == day
    ]
    return sorted(logged, key=lambda item: item.follow_up.moment.to_instant(tz))


def _task(
    *,
    source_id: str,
    source_kind: TaskSource,
    moment: ScheduleMoment,
    title: str,
    reference: date,
    tz: tzinfo,
    client_id: str | None = None,
    value: Decimal | None = None,
) -> UnifiedTask:
    day = moment.to_date(tz)
    return UnifiedTask(
        source_id=source_id,
        source_kind=source_kind,
        moment=moment,
        title=title,
        is_overdue=day < reference,
        is_today=day == reference,
        client_id=client_id,
        value=value,
    )
