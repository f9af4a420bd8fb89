from __future__ import annotations

from dataclasses import replace
from datetime import date, tzinfo
from decimal import Decimal
from uuid import uuid4

from dealdesk.domain import rules
from dealdesk.domain.followups import add_follow_up, created_event, replay
from dealdesk.domain.models import Client, Deal, Reminder, Seller
from dealdesk.domain.moment import REFERENCE_TZ, ScheduleMoment, today
from dealdesk.domain.stages import DealStatus, InteractionStatus, SellerRole
from dealdesk.domain.transitions import StatusContext, change_status
from dealdesk.services.events import EventLogger
from dealdesk.services.utils import utc_now
from dealdesk.store import repository
from dealdesk.store.sqlite import SqliteStore


def add_seller(
    store: SqliteStore,
    name: str,
    role: str = SellerRole.SALESPERSON.value,
    monthly_goal: Decimal | None = None,
) -> str:
    rules.require(name, "name")
    rules.validate_enum(role, [r.value for r in SellerRole], "role")
    if monthly_goal is not None:
        rules.require_non_negative(monthly_goal, "monthly_goal")
    seller = Seller(
        seller_id=str(uuid4()),
        name=name.strip(),
        role=SellerRole(role),
        monthly_goal=monthly_goal,
    )
    repository.insert_seller(store, seller, utc_now().isoformat())
    return seller.seller_id


def set_monthly_goal(store: SqliteStore, seller_id: str, monthly_goal: Decimal | None) -> Seller:
    if monthly_goal is not None:
        rules.require_non_negative(monthly_goal, "monthly_goal")
    with store.session() as session:
        seller = replace(repository.get_seller(session, seller_id), monthly_goal=monthly_goal)
        repository.update_seller(session, seller, utc_now().isoformat())
    return seller


def add_client(
    store: SqliteStore,
    name: str,
    cnpj: str | None = None,
    address: str | None = None,
) -> str:
    rules.require(name, "name")
    with store.session() as session:
        return _get_or_create_client(session, name.strip(), cnpj, address)


def update_client(
    store: SqliteStore,
    client_id: str,
    *,
    name: str | None = None,
    cnpj: str | None = None,
    address: str | None = None,
    logger: EventLogger | None = None,
) -> Client:
    changes = {
        key: value
        for key, value in (("name", name), ("cnpj", cnpj), ("address", address))
        if value is not None
    }
    if "name" in changes:
        rules.require(name, "name")
        changes["name"] = name.strip()
    with store.session() as session:
        client = replace(repository.get_client(session, client_id), **changes)
        repository.update_client(session, client, utc_now().isoformat())
    if logger is not None and changes:
        logger.log(
            event_type="updated",
            entity_type="client",
            entity_id=client_id,
            changed_fields=sorted(changes),
        )
    return client


def delete_client(store: SqliteStore, client_id: str, logger: EventLogger | None = None) -> None:
    with store.session() as session:
        repository.get_client(session, client_id)
        if repository.list_deals(session, client_id=client_id):
            raise rules.ValidationError("Client still has deals; delete them first.")
        repository.delete_client(session, client_id)
    if logger is not None:
        logger.log(event_type="deleted", entity_type="client", entity_id=client_id)


def create_deal(
    store: SqliteStore,
    *,
    client: str,
    title: str,
    value: Decimal,
    seller_id: str | None = None,
    contact_id: str | None = None,
    date_sent: date | None = None,
    next_follow_up: ScheduleMoment | None = None,
    observations: str | None = None,
    logger: EventLogger | None = None,
    tz: tzinfo = REFERENCE_TZ,
) -> str:
    """Create a deal in SENT. ``client`` is a client id or a client name."""
    rules.require(client, "client")
    rules.require(title, "title")
    rules.require_non_negative(value, "value")

    now = utc_now()
    with store.session() as session:
        client_id = _resolve_client(session, client)
        if seller_id is not None:
            repository.get_seller(session, seller_id)
        deal = Deal(
            deal_id=str(uuid4()),
            client_id=client_id,
            seller_id=seller_id,
            contact_id=contact_id,
            title=title.strip(),
            value=value,
            date_sent=ScheduleMoment.on(date_sent or today(now, tz)),
            next_follow_up=next_follow_up,
            observations=observations,
        )
        repository.insert_deal(session, deal, now.isoformat())
        repository.append_event(session, deal.deal_id, created_event(deal, now))

    if logger is not None:
        logger.log(event_type="created", entity_type="deal", entity_id=deal.deal_id)
    return deal.deal_id


def change_deal_status(
    store: SqliteStore,
    deal_id: str,
    target: DealStatus | str,
    *,
    closing_value: Decimal | None = None,
    lost_reason: str | None = None,
    logger: EventLogger | None = None,
) -> Deal:
    now = utc_now()
    with store.session() as session:
        deal = repository.get_deal(session, deal_id)
        previous = deal.status
        event = change_status(
            deal,
            target,
            StatusContext(closing_value=closing_value, lost_reason=lost_reason),
            now=now,
        )
        repository.update_deal(session, deal, now.isoformat())
        repository.append_event(session, deal_id, event)

    if logger is not None:
        logger.log(
            event_type="status_changed",
            entity_type="deal",
            entity_id=deal_id,
            changed_fields=["status", "next_follow_up"],
            detail={"from": previous.value, "to": deal.status.value},
        )
    return deal


def log_follow_up(
    store: SqliteStore,
    deal_id: str,
    *,
    notes: str | None,
    audio_ref: str | None = None,
    next_moment: ScheduleMoment | None = None,
    interaction_status: str = InteractionStatus.WAITING_RESPONSE.value,
    logger: EventLogger | None = None,
    tz: tzinfo = REFERENCE_TZ,
) -> Deal:
    now = utc_now()
    with store.session() as session:
        deal = repository.get_deal(session, deal_id)
        event = add_follow_up(
            deal,
            notes,
            audio_ref,
            next_moment,
            interaction_status=interaction_status,
            now=now,
            tz=tz,
        )
        repository.update_deal(session, deal, now.isoformat())
        repository.append_event(session, deal_id, event)

    if logger is not None:
        logger.log(
            event_type="follow_up_added",
            entity_type="deal",
            entity_id=deal_id,
            changed_fields=["follow_ups", "next_follow_up", "status"],
        )
    return deal


def replay_deal(store: SqliteStore, deal_id: str) -> Deal:
    with store.session() as session:
        deal = repository.get_deal(session, deal_id)
        events = repository.list_events(session, deal_id)
    return replay(deal, events)


def delete_deal(store: SqliteStore, deal_id: str, logger: EventLogger | None = None) -> None:
    """Remove a deal with its follow-ups and event log."""
    with store.session() as session:
        repository.delete_deal(session, deal_id)
    if logger is not None:
        logger.log(event_type="deleted", entity_type="deal", entity_id=deal_id)


def add_reminder(
    store: SqliteStore,
    title: str,
    moment: ScheduleMoment,
    logger: EventLogger | None = None,
) -> str:
    rules.require(title, "title")
    reminder = Reminder(reminder_id=str(uuid4()), title=title.strip(), moment=moment)
    repository.insert_reminder(store, reminder, utc_now().isoformat())
    if logger is not None:
        logger.log(event_type="created", entity_type="reminder", entity_id=reminder.reminder_id)
    return reminder.reminder_id


def complete_reminder(
    store: SqliteStore, reminder_id: str, logger: EventLogger | None = None
) -> Reminder:
    return _close_reminder(store, reminder_id, "is_completed", logger)


def dismiss_reminder(
    store: SqliteStore, reminder_id: str, logger: EventLogger | None = None
) -> Reminder:
    return _close_reminder(store, reminder_id, "is_dismissed", logger)


def delete_reminder(
    store: SqliteStore, reminder_id: str, logger: EventLogger | None = None
) -> None:
    repository.delete_reminder(store, reminder_id)
    if logger is not None:
        logger.log(event_type="deleted", entity_type="reminder", entity_id=reminder_id)


def _close_reminder(
    store: SqliteStore, reminder_id: str, flag: str, logger: EventLogger | None
) -> Reminder:
    with store.session() as session:
        reminder = replace(repository.get_reminder(session, reminder_id), **{flag: True})
        repository.update_reminder(session, reminder, utc_now().isoformat())
    if logger is not None:
        logger.log(
            event_type="updated",
            entity_type="reminder",
            entity_id=reminder_id,
            changed_fields=[flag],
        )
    return reminder


def _resolve_client(session, client: str) -> str:
    row = session.fetch_one("SELECT client_id FROM clients WHERE client_id = ?", (client,))
    if row:
        return row["client_id"]
    return _get_or_create_client(session, client.strip(), None, None)


def _get_or_create_client(
    session, name: str, cnpj: str | None, address: str | None
) -> str:
    if cnpj:
        row = session.fetch_one("SELECT client_id FROM clients WHERE cnpj = ?", (cnpj,))
        if row:
            return row["client_id"]
    existing = repository.find_client_by_name(session, name)
    if existing:
        return existing.client_id
    client = Client(client_id=str(uuid4()), name=name, cnpj=cnpj, address=address)
    repository.insert_client(session, client, utc_now().isoformat())
    return client.client_id
