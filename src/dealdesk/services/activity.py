from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from decimal import Decimal

from dealdesk.domain.models import Client, Deal
from dealdesk.domain.moment import REFERENCE_TZ
from dealdesk.domain.stages import ActivityStatus, DealStatus

INACTIVE_THRESHOLD_DAYS = 90


@dataclass(frozen=True)
class ClientActivity:
    client: Client
    last_activity: datetime | None
    days_since_activity: int | None
    activity_status: ActivityStatus
    deal_count: int
    won_value: Decimal


@dataclass(frozen=True)
class ClientSummary:
    active: int
    inactive: int
    idle: int
    total_revenue: Decimal


def last_activity(deals: Iterable[Deal], tz: tzinfo = REFERENCE_TZ) -> datetime | None:
    moments = [
        moment.to_instant(tz)
        for deal in deals
        for moment in (deal.date_sent, *(f.moment for f in deal.follow_ups))
    ]
    return max(moments, default=None)


def days_since(moment: datetime | None, now: datetime | None = None) -> int | None:
    if moment is None:
        return None
    current = now or datetime.now(UTC)
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    hours = abs((current - moment).total_seconds()) / 3600
    return math.ceil(hours / 24)


def activity_status(days: int | None) -> ActivityStatus:
    if days is None:
        return ActivityStatus.IDLE
    if days > INACTIVE_THRESHOLD_DAYS:
        return ActivityStatus.INACTIVE
    return ActivityStatus.ACTIVE


def classify_client(
    client: Client,
    deals: Iterable[Deal],
    *,
    now: datetime | None = None,
    tz: tzinfo = REFERENCE_TZ,
) -> ClientActivity:
    owned = [deal for deal in deals if deal.client_id == client.client_id]
    latest = last_activity(owned, tz)
    days = days_since(latest, now)
    won_value = sum((d.realized_value for d in owned if d.status is DealStatus.WON), Decimal("0"))
    return ClientActivity(
        client=client,
        last_activity=latest,
        days_since_activity=days,
        activity_status=activity_status(days),
        deal_count=len(owned),
        won_value=won_value,
    )


def classify_clients(
    clients: Iterable[Client],
    deals: Iterable[Deal],
    *,
    now: datetime | None = None,
    tz: tzinfo = REFERENCE_TZ,
) -> list[ClientActivity]:
    by_client: dict[str, list[Deal]] = defaultdict(list)
    for deal in deals:
        by_client[deal.client_id].append(deal)
    profiles = [
        classify_client(client, by_client.get(client.client_id, []), now=now, tz=tz)
        for client in clients
    ]
    return sorted(profiles, key=lambda p: p.won_value, reverse=True)


def summarize_clients(profiles: Iterable[ClientActivity]) -> ClientSummary:
    counts = {status: 0 for status in ActivityStatus}
    revenue = Decimal("0")
    for profile in profiles:
        counts[profile.activity_status] += 1
        revenue += profile.won_value
    return ClientSummary(
        active=counts[ActivityStatus.ACTIVE],
        inactive=counts[ActivityStatus.INACTIVE],
        idle=counts[ActivityStatus.IDLE],
        total_revenue=revenue,
    )
