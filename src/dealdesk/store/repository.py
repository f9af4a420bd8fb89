"""Entity persistence for the SQLite store.

Functions take either a :class:`SqliteStore` (one transaction per call) or a
:class:`SqliteSession` (caller-controlled transaction). Nothing is cached:
callers load a :class:`Snapshot`, mutate models, persist, and load a fresh
snapshot afterwards.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol
from uuid import uuid4

from dealdesk.domain.models import Client, Deal, DealEvent, FollowUp, Reminder, Seller
from dealdesk.domain.moment import ScheduleMoment
from dealdesk.domain.rules import NotFoundError
from dealdesk.domain.stages import (
    DealEventKind,
    DealStatus,
    InteractionStatus,
    SellerRole,
)
from dealdesk.store.sqlite import SqliteStore


class _StoreLike(Protocol):
    def execute(self, query: str, params: Iterable[object] | None = None) -> int: ...

    def fetch_one(self, query: str, params: Iterable[object] | None = None): ...

    def fetch_all(self, query: str, params: Iterable[object] | None = None): ...


@dataclass(frozen=True)
class Snapshot:
    sellers: list[Seller] = field(default_factory=list)
    clients: list[Client] = field(default_factory=list)
    deals: list[Deal] = field(default_factory=list)
    reminders: list[Reminder] = field(default_factory=list)

    def client_names(self) -> dict[str, str]:
        return {client.client_id: client.name for client in self.clients}

    def deal(self, deal_id: str) -> Deal:
        for deal in self.deals:
            if deal.deal_id == deal_id:
                return deal
        raise NotFoundError(f"Deal not found: {deal_id}")


def load_snapshot(store: SqliteStore) -> Snapshot:
    with store.session() as session:
        return Snapshot(
            sellers=list_sellers(session),
            clients=list_clients(session),
            deals=list_deals(session),
            reminders=list_reminders(session),
        )


# Sellers


def insert_seller(store: _StoreLike, seller: Seller, now: str) -> None:
    store.execute(
        "INSERT INTO sellers (seller_id, name, role, monthly_goal, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (seller.seller_id, seller.name, seller.role.value, _amount(seller.monthly_goal), now, now),
    )


def get_seller(store: _StoreLike, seller_id: str) -> Seller:
    row = store.fetch_one("SELECT * FROM sellers WHERE seller_id = ?", (seller_id,))
    if row is None:
        raise NotFoundError(f"Seller not found: {seller_id}")
    return _seller(row)


def list_sellers(store: _StoreLike) -> list[Seller]:
    rows = store.fetch_all("SELECT * FROM sellers ORDER BY name")
    return [_seller(row) for row in rows]


def update_seller(store: _StoreLike, seller: Seller, now: str) -> None:
    changed = store.execute(
        "UPDATE sellers SET name = ?, role = ?, monthly_goal = ?, updated_at = ? WHERE seller_id = ?",
        (seller.name, seller.role.value, _amount(seller.monthly_goal), now, seller.seller_id),
    )
    _ensure_found(changed, "Seller", seller.seller_id)


# Clients


def insert_client(store: _StoreLike, client: Client, now: str) -> None:
    store.execute(
        "INSERT INTO clients (client_id, name, cnpj, address, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (client.client_id, client.name, client.cnpj, client.address, now, now),
    )


def get_client(store: _StoreLike, client_id: str) -> Client:
    row = store.fetch_one("SELECT * FROM clients WHERE client_id = ?", (client_id,))
    if row is None:
        raise NotFoundError(f"Client not found: {client_id}")
    return _client(row)


def find_client_by_name(store: _StoreLike, name: str) -> Client | None:
    row = store.fetch_one("SELECT * FROM clients WHERE name = ?", (name,))
    return _client(row) if row else None


def list_clients(store: _StoreLike) -> list[Client]:
    rows = store.fetch_all("SELECT * FROM clients ORDER BY name")
    return [_client(row) for row in rows]


def update_client(store: _StoreLike, client: Client, now: str) -> None:
    changed = store.execute(
        "UPDATE clients SET name = ?, cnpj = ?, address = ?, updated_at = ? WHERE client_id = ?",
        (client.name, client.cnpj, client.address, now, client.client_id),
    )
    _ensure_found(changed, "Client", client.client_id)


def delete_client(store: _StoreLike, client_id: str) -> None:
    _ensure_found(
        store.execute("DELETE FROM clients WHERE client_id = ?", (client_id,)),
        "Client",
        client_id,
    )


# Deals


def insert_deal(store: _StoreLike, deal: Deal, now: str) -> None:
    next_precision, next_at = _moment(deal.next_follow_up)
    store.execute(
        "INSERT INTO deals (deal_id, client_id, seller_id, contact_id, title, value, status, date_sent, "
        "next_follow_up_precision, next_follow_up_at, lost_reason, closing_value, observations, "
        "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            deal.deal_id,
            deal.client_id,
            deal.seller_id,
            deal.contact_id,
            deal.title,
            _amount(deal.value),
            deal.status.value,
            deal.date_sent.to_date().isoformat(),
            next_precision,
            next_at,
            deal.lost_reason,
            _amount(deal.closing_value),
            deal.observations,
            now,
            now,
        ),
    )
    _insert_new_follow_ups(store, deal, now)


def get_deal(store: _StoreLike, deal_id: str) -> Deal:
    row = store.fetch_one("SELECT * FROM deals WHERE deal_id = ?", (deal_id,))
    if row is None:
        raise NotFoundError(f"Deal not found: {deal_id}")
    rows = store.fetch_all(
        "SELECT * FROM follow_ups WHERE deal_id = ? ORDER BY seq", (deal_id,)
    )
    return _deal(row, [_follow_up(r) for r in rows])


def list_deals(
    store: _StoreLike,
    status: DealStatus | None = None,
    client_id: str | None = None,
) -> list[Deal]:
    where: list[str] = []
    params: list[object] = []
    if status is not None:
        where.append("status = ?")
        params.append(DealStatus(status).value)
    if client_id is not None:
        where.append("client_id = ?")
        params.append(client_id)
    clause = f"WHERE {' AND '.join(where)} " if where else ""
    rows = store.fetch_all(f"SELECT * FROM deals {clause}ORDER BY date_sent, deal_id", params)
    follow_ups: dict[str, list[FollowUp]] = defaultdict(list)
    for row in store.fetch_all("SELECT * FROM follow_ups ORDER BY deal_id, seq"):
        follow_ups[row["deal_id"]].append(_follow_up(row))
    return [_deal(row, follow_ups.get(row["deal_id"], [])) for row in rows]


def update_deal(store: _StoreLike, deal: Deal, now: str) -> None:
    """Persist ``deal``; follow-ups are append-only so only new ones are written."""
    next_precision, next_at = _moment(deal.next_follow_up)
    changed = store.execute(
        "UPDATE deals SET client_id = ?, seller_id = ?, contact_id = ?, title = ?, value = ?, "
        "status = ?, date_sent = ?, next_follow_up_precision = ?, next_follow_up_at = ?, "
        "lost_reason = ?, closing_value = ?, observations = ?, updated_at = ? WHERE deal_id = ?",
        (
            deal.client_id,
            deal.seller_id,
            deal.contact_id,
            deal.title,
            _amount(deal.value),
            deal.status.value,
            deal.date_sent.to_date().isoformat(),
            next_precision,
            next_at,
            deal.lost_reason,
            _amount(deal.closing_value),
            deal.observations,
            now,
            deal.deal_id,
        ),
    )
    _ensure_found(changed, "Deal", deal.deal_id)
    _insert_new_follow_ups(store, deal, now)


def delete_deal(store: _StoreLike, deal_id: str) -> None:
    store.execute("DELETE FROM deal_events WHERE deal_id = ?", (deal_id,))
    store.execute("DELETE FROM follow_ups WHERE deal_id = ?", (deal_id,))
    _ensure_found(
        store.execute("DELETE FROM deals WHERE deal_id = ?", (deal_id,)),
        "Deal",
        deal_id,
    )


# Deal events


def append_event(store: _StoreLike, deal_id: str, event: DealEvent) -> str:
    row = store.fetch_one(
        "SELECT COALESCE(MAX(seq), 0) AS seq FROM deal_events WHERE deal_id = ?", (deal_id,)
    )
    next_precision, next_at = _moment(event.next_follow_up)
    event_id = str(uuid4())
    store.execute(
        "INSERT INTO deal_events (event_id, deal_id, seq, kind, status, next_follow_up_precision, "
        "next_follow_up_at, closing_value, lost_reason, follow_up_id, occurred_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            event_id,
            deal_id,
            int(row["seq"]) + 1,
            event.kind.value,
            event.status.value,
            next_precision,
            next_at,
            _amount(event.closing_value),
            event.lost_reason,
            event.follow_up.follow_up_id if event.follow_up else None,
            event.occurred_at.isoformat(),
        ),
    )
    return event_id


def list_events(store: _StoreLike, deal_id: str) -> list[DealEvent]:
    follow_ups = {
        row["follow_up_id"]: _follow_up(row)
        for row in store.fetch_all("SELECT * FROM follow_ups WHERE deal_id = ?", (deal_id,))
    }
    rows = store.fetch_all(
        "SELECT * FROM deal_events WHERE deal_id = ? ORDER BY seq", (deal_id,)
    )
    return [
        DealEvent(
            kind=DealEventKind(row["kind"]),
            occurred_at=datetime.fromisoformat(row["occurred_at"]),
            status=DealStatus(row["status"]),
            next_follow_up=ScheduleMoment.from_storage(
                row["next_follow_up_precision"], row["next_follow_up_at"]
            ),
            closing_value=_decimal(row["closing_value"]),
            lost_reason=row["lost_reason"],
            follow_up=follow_ups.get(row["follow_up_id"]) if row["follow_up_id"] else None,
        )
        for row in rows
    ]


# Reminders


def insert_reminder(store: _StoreLike, reminder: Reminder, now: str) -> None:
    precision, moment_at = reminder.moment.to_storage()
    store.execute(
        "INSERT INTO reminders (reminder_id, title, moment_precision, moment_at, is_completed, "
        "is_dismissed, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        (
            reminder.reminder_id,
            reminder.title,
            precision,
            moment_at,
            int(reminder.is_completed),
            int(reminder.is_dismissed),
            now,
            now,
        ),
    )


def get_reminder(store: _StoreLike, reminder_id: str) -> Reminder:
    row = store.fetch_one("SELECT * FROM reminders WHERE reminder_id = ?", (reminder_id,))
    if row is None:
        raise NotFoundError(f"Reminder not found: {reminder_id}")
    return _reminder(row)


def list_reminders(store: _StoreLike, include_closed: bool = True) -> list[Reminder]:
    where = "" if include_closed else "WHERE is_completed = 0 AND is_dismissed = 0 "
    rows = store.fetch_all(f"SELECT * FROM reminders {where}ORDER BY moment_at")
    return [_reminder(row) for row in rows]


def update_reminder(store: _StoreLike, reminder: Reminder, now: str) -> None:
    precision, moment_at = reminder.moment.to_storage()
    changed = store.execute(
        "UPDATE reminders SET title = ?, moment_precision = ?, moment_at = ?, is_completed = ?, "
        "is_dismissed = ?, updated_at = ? WHERE reminder_id = ?",
        (
            reminder.title,
            precision,
            moment_at,
            int(reminder.is_completed),
            int(reminder.is_dismissed),
            now,
            reminder.reminder_id,
        ),
    )
    _ensure_found(changed, "Reminder", reminder.reminder_id)


def delete_reminder(store: _StoreLike, reminder_id: str) -> None:
    _ensure_found(
        store.execute("DELETE FROM reminders WHERE reminder_id = ?", (reminder_id,)),
        "Reminder",
        reminder_id,
    )


def _insert_new_follow_ups(store: _StoreLike, deal: Deal, now: str) -> None:
    rows = store.fetch_all("SELECT follow_up_id FROM follow_ups WHERE deal_id = ?", (deal.deal_id,))
    stored = {row["follow_up_id"] for row in rows}
    for seq, follow_up in enumerate(deal.follow_ups, start=1):
        if follow_up.follow_up_id in stored:
            continue
        precision, moment_at = follow_up.moment.to_storage()
        store.execute(
            "INSERT INTO follow_ups (follow_up_id, deal_id, seq, moment_precision, moment_at, notes, "
            "interaction_status, audio_ref, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                follow_up.follow_up_id,
                deal.deal_id,
                seq,
                precision,
                moment_at,
                follow_up.notes,
                follow_up.interaction_status.value,
                follow_up.audio_ref,
                now,
            ),
        )


def _ensure_found(changed: int, entity: str, record_id: str) -> None:
    if changed == 0:
        raise NotFoundError(f"{entity} not found: {record_id}")


def _moment(moment: ScheduleMoment | None) -> tuple[str | None, str | None]:
    if moment is None:
        return None, None
    return moment.to_storage()


def _amount(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


def _seller(row) -> Seller:
    return Seller(
        seller_id=row["seller_id"],
        name=row["name"],
        role=SellerRole(row["role"]),
        monthly_goal=_decimal(row["monthly_goal"]),
    )


def _client(row) -> Client:
    return Client(
        client_id=row["client_id"],
        name=row["name"],
        cnpj=row["cnpj"],
        address=row["address"],
    )


def _follow_up(row) -> FollowUp:
    return FollowUp(
        follow_up_id=row["follow_up_id"],
        moment=ScheduleMoment.from_storage(row["moment_precision"], row["moment_at"]),
        notes=row["notes"] or "",
        interaction_status=InteractionStatus(row["interaction_status"]),
        audio_ref=row["audio_ref"],
    )


def _deal(row, follow_ups: list[FollowUp]) -> Deal:
    return Deal(
        deal_id=row["deal_id"],
        client_id=row["client_id"],
        seller_id=row["seller_id"],
        contact_id=row["contact_id"],
        title=row["title"],
        value=_decimal(row["value"]) or Decimal("0"),
        status=DealStatus(row["status"]),
        date_sent=ScheduleMoment.on(date.fromisoformat(row["date_sent"])),
        next_follow_up=ScheduleMoment.from_storage(
            row["next_follow_up_precision"], row["next_follow_up_at"]
        ),
        follow_ups=list(follow_ups),
        lost_reason=row["lost_reason"],
        closing_value=_decimal(row["closing_value"]),
        observations=row["observations"],
    )


def _reminder(row) -> Reminder:
    return Reminder(
        reminder_id=row["reminder_id"],
        title=row["title"],
        moment=ScheduleMoment.from_storage(row["moment_precision"], row["moment_at"]),
        is_completed=bool(row["is_completed"]),
        is_dismissed=bool(row["is_dismissed"]),
    )
