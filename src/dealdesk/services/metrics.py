"""Pipeline aggregates.

Every reducer returns ``None`` when its figure is not applicable (nothing to
divide by) instead of raising or producing NaN.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from decimal import Decimal

from dealdesk.domain import rules
from dealdesk.domain.models import Deal, Seller
from dealdesk.domain.moment import REFERENCE_TZ
from dealdesk.domain.stages import ACTIVE_STATUSES, DealStatus, LeaderboardMetric
from dealdesk.services.tasks import classify_tasks

PERIODS = ("month", "30days", "all")
UNSPECIFIED_REASON = "unspecified"


@dataclass(frozen=True)
class FunnelStage:
    name: str
    count: int
    value: Decimal
    conversion_from_previous: float | None


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    seller_id: str
    name: str
    score: Decimal


@dataclass(frozen=True)
class ClientTotal:
    client_id: str
    name: str
    value: Decimal


@dataclass(frozen=True)
class MonthTotal:
    month: str
    value: Decimal


@dataclass(frozen=True)
class ReasonCount:
    reason: str
    count: int


@dataclass(frozen=True)
class PipelineSummary:
    active_value: Decimal
    active_count: int
    won_value: Decimal
    conversion_rate: float | None
    pipeline_conversion: float | None
    forecast_value: Decimal | None
    average_ticket: Decimal | None
    overdue_count: int


def _total(deals: Iterable[Deal]) -> Decimal:
    return sum((deal.value for deal in deals), Decimal("0"))


def _won_total(deals: Iterable[Deal]) -> Decimal:
    return sum((deal.realized_value for deal in deals), Decimal("0"))


def _with_status(deals: Iterable[Deal], *statuses: DealStatus) -> list[Deal]:
    return [deal for deal in deals if deal.status in statuses]


def conversion_rate(deals: Iterable[Deal]) -> float | None:
    deals = list(deals)
    won = len(_with_status(deals, DealStatus.WON))
    lost = len(_with_status(deals, DealStatus.LOST))
    if won + lost == 0:
        return None
    return won / (won + lost)


def pipeline_conversion(deals: Iterable[Deal]) -> float | None:
    deals = list(deals)
    if not deals:
        return None
    return len(_with_status(deals, DealStatus.WON)) / len(deals)


def active_pipeline_value(deals: Iterable[Deal]) -> Decimal:
    return _total(deal for deal in deals if deal.status in ACTIVE_STATUSES)


def forecast_value(deals: Iterable[Deal]) -> Decimal | None:
    deals = list(deals)
    won = len(_with_status(deals, DealStatus.WON))
    decided = won + len(_with_status(deals, DealStatus.LOST))
    if decided == 0:
        return None
    return active_pipeline_value(deals) * won / decided


def average_ticket(deals: Iterable[Deal]) -> Decimal | None:
    won = _with_status(deals, DealStatus.WON)
    if not won:
        return None
    return _won_total(won) / len(won)


def funnel(deals: Iterable[Deal]) -> list[FunnelStage]:
    deals = list(deals)
    stages = [
        ("Sent", deals),
        ("Following up", [d for d in deals if d.status is not DealStatus.SENT]),
        ("Decided", _with_status(deals, DealStatus.WON, DealStatus.LOST)),
        ("Won", _with_status(deals, DealStatus.WON)),
    ]
    result: list[FunnelStage] = []
    previous: int | None = None
    for name, members in stages:
        if previous is None:
            conversion = 100.0
        elif previous == 0:
            conversion = None
        else:
            conversion = len(members) / previous * 100
        result.append(
            FunnelStage(
                name=name,
                count=len(members),
                value=_total(members),
                conversion_from_previous=conversion,
            )
        )
        previous = len(members)
    return result


def in_month(deal: Deal, now: datetime, tz: tzinfo = REFERENCE_TZ) -> bool:
    sent = deal.date_sent.to_date(tz)
    current = now.astimezone(tz)
    return sent.year == current.year and sent.month == current.month


def goal_progress(
    deals: Iterable[Deal],
    seller_id: str,
    monthly_goal: Decimal | None,
    *,
    now: datetime | None = None,
    tz: tzinfo = REFERENCE_TZ,
) -> float | None:
    if not monthly_goal:
        return None
    monthly_goal = Decimal(str(monthly_goal))
    current = _aware(now)
    won = [
        deal
        for deal in deals
        if deal.seller_id == seller_id
        and deal.status is DealStatus.WON
        and in_month(deal, current, tz)
    ]
    return float(_won_total(won) / monthly_goal * 100)


def leaderboard(
    sellers: Iterable[Seller],
    deals: Iterable[Deal],
    metric: LeaderboardMetric | str = LeaderboardMetric.WON_VALUE,
    *,
    now: datetime | None = None,
    tz: tzinfo = REFERENCE_TZ,
) -> list[LeaderboardEntry]:
    """Rank sellers on this calendar month's deals.

    Equal scores are ordered by seller name (case-insensitive), then seller id.
    """
    rules.validate_enum(metric, [m.value for m in LeaderboardMetric], "metric")
    metric = LeaderboardMetric(metric)
    current = _aware(now)
    monthly: dict[str, list[Deal]] = defaultdict(list)
    for deal in deals:
        if deal.seller_id and in_month(deal, current, tz):
            monthly[deal.seller_id].append(deal)

    scored = []
    for seller in sellers:
        owned = monthly.get(seller.seller_id, [])
        won = _with_status(owned, DealStatus.WON)
        if metric is LeaderboardMetric.WON_VALUE:
            score = _won_total(won)
        elif metric is LeaderboardMetric.WON_COUNT:
            score = Decimal(len(won))
        else:
            score = Decimal(len(owned))
        scored.append((seller, score))

    scored.sort(key=lambda item: (-item[1], item[0].name.casefold(), item[0].seller_id))
    return [
        LeaderboardEntry(rank=index, seller_id=seller.seller_id, name=seller.name, score=score)
        for index, (seller, score) in enumerate(scored, start=1)
    ]


def top_clients(
    deals: Iterable[Deal], client_names: Mapping[str, str], limit: int = 5
) -> list[ClientTotal]:
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for deal in _with_status(deals, DealStatus.WON):
        totals[deal.client_id] += deal.realized_value
    ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))[:limit]
    return [
        ClientTotal(client_id=client_id, name=client_names.get(client_id, "Unknown client"), value=value)
        for client_id, value in ranked
    ]


def monthly_performance(
    deals: Iterable[Deal], months: int = 12, tz: tzinfo = REFERENCE_TZ
) -> list[MonthTotal]:
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for deal in _with_status(deals, DealStatus.WON):
        sent = deal.date_sent.to_date(tz)
        totals[f"{sent.year:04d}-{sent.month:02d}"] += deal.realized_value
    keys = sorted(totals)[-months:] if months > 0 else []
    return [MonthTotal(month=key, value=totals[key]) for key in keys]


def filter_by_period(
    deals: Iterable[Deal],
    period: str,
    *,
    now: datetime | None = None,
    tz: tzinfo = REFERENCE_TZ,
) -> list[Deal]:
    rules.validate_enum(period, PERIODS, "period")
    deals = list(deals)
    if period == "all":
        return deals
    current = _aware(now)
    if period == "month":
        return [deal for deal in deals if in_month(deal, current, tz)]
    cutoff = (current - timedelta(days=30)).astimezone(tz).date()
    return [deal for deal in deals if deal.date_sent.to_date(tz) >= cutoff]


def lost_reasons(deals: Iterable[Deal]) -> list[ReasonCount]:
    """Lost deals per reason, most frequent first."""
    counts: dict[str, int] = defaultdict(int)
    for deal in _with_status(deals, DealStatus.LOST):
        counts[deal.lost_reason or UNSPECIFIED_REASON] += 1
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [ReasonCount(reason=reason, count=count) for reason, count in ranked]


def overdue_count(
    deals: Iterable[Deal], *, now: datetime | None = None, tz: tzinfo = REFERENCE_TZ
) -> int:
    return len(classify_tasks(deals, [], now=now, tz=tz).overdue)


def summarize(
    deals: Iterable[Deal],
    *,
    period: str = "all",
    now: datetime | None = None,
    tz: tzinfo = REFERENCE_TZ,
) -> PipelineSummary:
    """Dashboard figures; overdue follow-ups ignore the period filter."""
    everything = list(deals)
    scoped = filter_by_period(everything, period, now=now, tz=tz)
    active = [deal for deal in scoped if deal.status in ACTIVE_STATUSES]
    return PipelineSummary(
        active_value=_total(active),
        active_count=len(active),
        won_value=_won_total(_with_status(scoped, DealStatus.WON)),
        conversion_rate=conversion_rate(scoped),
        pipeline_conversion=pipeline_conversion(scoped),
        forecast_value=forecast_value(scoped),
        average_ticket=average_ticket(scoped),
        overdue_count=overdue_count(everything, now=now, tz=tz),
    )


def _aware(now: datetime | None) -> datetime:
    current = now or datetime.now(UTC)
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    return current
