from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

import pytest

from dealdesk.domain.moment import ScheduleMoment
from dealdesk.domain.rules import NotFoundError, ValidationError
from dealdesk.domain.stages import DealEventKind, DealStatus
from dealdesk.services import deals
from dealdesk.services.events import EventLogger
from dealdesk.store import repository
from dealdesk.store.sqlite import SqliteStore


def _store(tmp_path: Path) -> SqliteStore:
    db_path = tmp_path / "test.sqlite"
    store = SqliteStore(db_path)
    schema_path = (
        Path(__file__).resolve().parents[1] / "resources" / "schema" / "canonical.yaml"
    )
    store.apply_schema(schema_path)
    return store


def test_create_deal_reuses_client_by_name(tmp_path: Path) -> None:
    store = _store(tmp_path)
    first = deals.create_deal(store, client="Acme", title="Line A", value=Decimal("100"))
    second = deals.create_deal(store, client="Acme", title="Line B", value=Decimal("200"))

    snapshot = repository.load_snapshot(store)
    assert len(snapshot.clients) == 1
    assert snapshot.deal(first).client_id == snapshot.deal(second).client_id
    assert snapshot.deal(first).status is DealStatus.SENT


def test_create_deal_with_unknown_seller_fails(tmp_path: Path) -> None:
    store = _store(tmp_path)
    with pytest.raises(NotFoundError):
        deals.create_deal(
            store, client="Acme", title="Line A", value=Decimal("100"), seller_id="nobody"
        )
    assert repository.list_deals(store) == []


def test_moments_keep_precision_in_store(tmp_path: Path) -> None:
    store = _store(tmp_path)
    instant = ScheduleMoment.at(datetime(2024, 6, 20, 9, 30, tzinfo=UTC))
    deal_id = deals.create_deal(
        store,
        client="Acme",
        title="Line A",
        value=Decimal("100.50"),
        date_sent=date(2024, 6, 1),
        next_follow_up=instant,
    )

    deal = repository.get_deal(store, deal_id)
    assert deal.next_follow_up == instant
    assert deal.date_sent == ScheduleMoment.on(date(2024, 6, 1))
    assert deal.value == Decimal("100.50")


def test_follow_up_and_status_are_persisted_and_logged(tmp_path: Path) -> None:
    store = _store(tmp_path)
    logger = EventLogger(path=tmp_path / "events.ndjson", workspace="demo")
    deal_id = deals.create_deal(
        store, client="Acme", title="Line A", value=Decimal("100"), logger=logger
    )
    next_moment = ScheduleMoment.on(date(2030, 1, 10))

    deals.log_follow_up(store, deal_id, notes="Called buyer", next_moment=next_moment, logger=logger)
    deal = repository.get_deal(store, deal_id)
    assert deal.status is DealStatus.FOLLOWING_UP
    assert deal.next_follow_up == next_moment
    assert [f.notes for f in deal.follow_ups] == ["Called buyer"]

    deals.change_deal_status(
        store, deal_id, "won", closing_value=Decimal("95"), logger=logger
    )
    deal = repository.get_deal(store, deal_id)
    assert deal.status is DealStatus.WON
    assert deal.closing_value == Decimal("95")
    assert deal.next_follow_up is None

    events = logger.read()
    assert [e["event_type"] for e in events] == ["created", "follow_up_added", "status_changed"]
    assert events[-1]["detail"] == {"from": "following_up", "to": "won"}


def test_rejected_change_leaves_store_unchanged(tmp_path: Path) -> None:
    store = _store(tmp_path)
    deal_id = deals.create_deal(store, client="Acme", title="Line A", value=Decimal("100"))
    deals.change_deal_status(store, deal_id, "lost", lost_reason="price")

    with pytest.raises(ValidationError):
        deals.log_follow_up(store, deal_id, notes="One more try")
    with pytest.raises(ValidationError):
        deals.change_deal_status(store, deal_id, "won", closing_value=Decimal("1"))

    deal = repository.get_deal(store, deal_id)
    assert deal.status is DealStatus.LOST
    assert deal.follow_ups == []
    assert [e.kind for e in repository.list_events(store, deal_id)] == [
        DealEventKind.CREATED,
        DealEventKind.STATUS_CHANGED,
    ]


def test_replay_matches_stored_deal(tmp_path: Path) -> None:
    store = _store(tmp_path)
    deal_id = deals.create_deal(
        store,
        client="Acme",
        title="Line A",
        value=Decimal("100"),
        next_follow_up=ScheduleMoment.on(date(2030, 1, 1)),
    )
    deals.log_follow_up(
        store, deal_id, notes="Called", next_moment=ScheduleMoment.on(date(2030, 1, 5))
    )
    deals.change_deal_status(store, deal_id, "on_hold")
    deals.change_deal_status(store, deal_id, "following_up")
    deals.log_follow_up(
        store,
        deal_id,
        notes="Back on",
        next_moment=ScheduleMoment.at(datetime(2030, 2, 1, 14, 0, tzinfo=UTC)),
    )

    stored = repository.get_deal(store, deal_id)
    rebuilt = deals.replay_deal(store, deal_id)
    assert rebuilt.status is stored.status is DealStatus.FOLLOWING_UP
    assert rebuilt.next_follow_up == stored.next_follow_up
    assert rebuilt.follow_ups == stored.follow_ups


def test_unknown_deal_raises_not_found(tmp_path: Path) -> None:
    store = _store(tmp_path)
    with pytest.raises(NotFoundError):
        deals.change_deal_status(store, "missing", "won", closing_value=Decimal("1"))


def test_reminders_leave_open_list_when_closed(tmp_path: Path) -> None:
    store = _store(tmp_path)
    first = deals.add_reminder(store, "Renew certificate", ScheduleMoment.on(date(2030, 1, 1)))
    second = deals.add_reminder(store, "Call accountant", ScheduleMoment.on(date(2030, 1, 2)))

    deals.complete_reminder(store, first)
    deals.dismiss_reminder(store, second)

    assert repository.list_reminders(store, include_closed=False) == []
    assert repository.get_reminder(store, first).is_completed
    assert repository.get_reminder(store, second).is_dismissed
    with pytest.raises(NotFoundError):
        deals.complete_reminder(store, "missing")


def test_seller_goal(tmp_path: Path) -> None:
    store = _store(tmp_path)
    seller_id = deals.add_seller(store, "Ana", monthly_goal=Decimal("10000"))
    seller = deals.set_monthly_goal(store, seller_id, Decimal("12000"))

    assert seller.monthly_goal == Decimal("12000")
    assert repository.get_seller(store, seller_id).monthly_goal == Decimal("12000")
    with pytest.raises(ValidationError):
        deals.add_seller(store, "Bruno", role="intern")


def test_update_and_delete_client(tmp_path: Path) -> None:
    store = _store(tmp_path)
    client_id = deals.add_client(store, "Acme")
    client = deals.update_client(store, client_id, cnpj="12.345.678/0001-90")

    assert client.name == "Acme"
    assert repository.get_client(store, client_id).cnpj == "12.345.678/0001-90"

    deal_id = deals.create_deal(store, client=client_id, title="Line A", value=Decimal("100"))
    with pytest.raises(ValidationError):
        deals.delete_client(store, client_id)

    deals.delete_deal(store, deal_id)
    deals.delete_client(store, client_id)
    assert repository.list_clients(store) == []
    with pytest.raises(NotFoundError):
        repository.get_deal(store, deal_id)


def test_delete_deal_removes_history(tmp_path: Path) -> None:
    store = _store(tmp_path)
    deal_id = deals.create_deal(store, client="Acme", title="Line A", value=Decimal("100"))
    deals.log_follow_up(store, deal_id, notes="Called")

    deals.delete_deal(store, deal_id)

    assert repository.list_events(store, deal_id) == []
    assert store.fetch_all("SELECT * FROM follow_ups WHERE deal_id = ?", (deal_id,)) == []
    with pytest.raises(NotFoundError):
        deals.delete_deal(store, deal_id)


def test_delete_reminder(tmp_path: Path) -> None:
    store = _store(tmp_path)
    reminder_id = deals.add_reminder(store, "Renew certificate", ScheduleMoment.on(date(2030, 1, 1)))
    deals.delete_reminder(store, reminder_id)
    assert repository.list_reminders(store) == []
