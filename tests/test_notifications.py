from datetime import UTC, date, datetime
from decimal import Decimal

from dealdesk.domain.models import Deal, Reminder
from dealdesk.domain.moment import ScheduleMoment
from dealdesk.domain.stages import DealStatus, NotificationKind
from dealdesk.services.notifications import UNKNOWN_CLIENT, generate_notifications
from dealdesk.services.tasks import classify_tasks

NOW = datetime(2024, 6, 15, 8, 0, tzinfo=UTC)


def _deal(deal_id: str, client_id: str, day: date) -> Deal:
    return Deal(
        deal_id=deal_id,
        client_id=client_id,
        seller_id=None,
        title=f"Proposal {deal_id}",
        value=Decimal("1000"),
        date_sent=ScheduleMoment.on(date(2024, 6, 1)),
        status=DealStatus.FOLLOWING_UP,
        next_follow_up=ScheduleMoment.on(day),
    )


def test_yesterday_follow_up_gives_one_overdue_notification() -> None:
    triage = classify_tasks([_deal("d1", "c1", date(2024, 6, 14))], [], now=NOW)
    notifications = generate_notifications(triage, {"c1": "Acme"})

    assert len(notifications) == 1
    notification = notifications[0]
    assert notification.kind is NotificationKind.OVERDUE
    assert notification.client_name == "Acme"
    assert notification.notification_id == "overdue-d1"
    assert "Proposal d1" in notification.message


def test_today_and_unknown_client() -> None:
    triage = classify_tasks([_deal("d2", "missing", date(2024, 6, 15))], [], now=NOW)
    notifications = generate_notifications(triage)

    assert [n.kind for n in notifications] == [NotificationKind.TODAY]
    assert notifications[0].client_name == UNKNOWN_CLIENT


def test_reminders_and_upcoming_do_not_notify() -> None:
    reminders = [Reminder("r1", "Pay invoice", ScheduleMoment.on(date(2024, 6, 1)))]
    deals = [_deal("d3", "c1", date(2024, 6, 30))]
    triage = classify_tasks(deals, reminders, now=NOW)

    assert len(triage.overdue) == 1
    assert generate_notifications(triage, {"c1": "Acme"}) == []
