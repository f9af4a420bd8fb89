from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import UTC, datetime, tzinfo
from uuid import uuid4

from dealdesk.domain import rules
from dealdesk.domain.models import Deal, DealEvent, FollowUp
from dealdesk.domain.moment import REFERENCE_TZ, Precision, ScheduleMoment
from dealdesk.domain.rules import ValidationError
from dealdesk.domain.stages import (
    DealEventKind,
    DealStatus,
    FROZEN_STATUSES,
    InteractionStatus,
)
from dealdesk.domain.transitions import StatusContext, change_status


def add_follow_up(
    deal: Deal,
    notes: str | None,
    audio_ref: str | None = None,
    next_moment: ScheduleMoment | None = None,
    *,
    interaction_status: InteractionStatus | str = InteractionStatus.WAITING_RESPONSE,
    precision: Precision = Precision.INSTANT,
    now: datetime | None = None,
    follow_up_id: str | None = None,
    tz: tzinfo = REFERENCE_TZ,
) -> DealEvent:
    """Log a contact on ``deal`` and reschedule its next follow-up.

    ``next_moment`` replaces the current schedule, ``None`` included. A deal
    still in SENT moves to FOLLOWING_UP.
    """
    notes = (notes or "").strip()
    if not notes and not audio_ref:
        raise ValidationError("A follow-up needs notes or an audio attachment.")
    rules.validate_enum(
        interaction_status, [s.value for s in InteractionStatus], "interaction_status"
    )
    _ensure_accepts_follow_ups(deal)

    current = now or datetime.now(UTC).replace(microsecond=0)
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    moment = (
        ScheduleMoment.on(current.astimezone(tz).date())
        if Precision(precision) is Precision.DATE
        else ScheduleMoment.at(current)
    )
    follow_up = FollowUp(
        follow_up_id=follow_up_id or str(uuid4()),
        moment=moment,
        notes=notes,
        interaction_status=InteractionStatus(interaction_status),
        audio_ref=audio_ref,
    )
    _append(deal, follow_up, next_moment)
    return DealEvent(
        kind=DealEventKind.FOLLOW_UP_ADDED,
        occurred_at=current,
        status=deal.status,
        next_follow_up=next_moment,
        follow_up=follow_up,
    )


def created_event(deal: Deal, now: datetime | None = None) -> DealEvent:
    return DealEvent(
        kind=DealEventKind.CREATED,
        occurred_at=now or datetime.now(UTC).replace(microsecond=0),
        status=DealStatus.SENT,
        next_follow_up=deal.next_follow_up,
    )


def replay(deal: Deal, events: Iterable[DealEvent]) -> Deal:
    """Rebuild ``deal`` from its identity fields and ordered event log."""
    rebuilt = replace(
        deal,
        status=DealStatus.SENT,
        next_follow_up=None,
        follow_ups=[],
        lost_reason=None,
        closing_value=None,
    )
    for event in events:
        if event.kind is DealEventKind.CREATED:
            rebuilt.next_follow_up = event.next_follow_up
        elif event.kind is DealEventKind.STATUS_CHANGED:
            change_status(
                rebuilt,
                event.status,
                StatusContext(closing_value=event.closing_value, lost_reason=event.lost_reason),
                now=event.occurred_at,
            )
        elif event.kind is DealEventKind.FOLLOW_UP_ADDED:
            if event.follow_up is None:
                raise ValidationError("follow_up_added event is missing its follow-up.")
            _ensure_accepts_follow_ups(rebuilt)
            _append(rebuilt, event.follow_up, event.next_follow_up)
        else:
            raise ValidationError(f"Unknown deal event: {event.kind!r}")
    return rebuilt


def _ensure_accepts_follow_ups(deal: Deal) -> None:
    if deal.status in FROZEN_STATUSES:
        raise ValidationError(
            f"Deal is {deal.status.value}; reactivate it before logging follow-ups."
        )


def _append(deal: Deal, follow_up: FollowUp, next_moment: ScheduleMoment | None) -> None:
    deal.follow_ups.append(follow_up)
    deal.next_follow_up = next_moment
    if deal.status is DealStatus.SENT:
        deal.status = DealStatus.FOLLOWING_UP
