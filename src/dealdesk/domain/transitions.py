"""Deal status transitions.

``ALLOWED_TRANSITIONS`` is the only place that decides which moves are legal;
callers go through :func:`change_status` and never compare statuses
themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from dealdesk.domain import rules
from dealdesk.domain.models import Deal, DealEvent
from dealdesk.domain.rules import ValidationError
from dealdesk.domain.stages import DealEventKind, DealStatus, FROZEN_STATUSES, LostReason

ALLOWED_TRANSITIONS: dict[DealStatus, frozenset[DealStatus]] = {
    DealStatus.SENT: frozenset(
        {DealStatus.FOLLOWING_UP, DealStatus.ON_HOLD, DealStatus.WON, DealStatus.LOST}
    ),
    DealStatus.FOLLOWING_UP: frozenset({DealStatus.ON_HOLD, DealStatus.WON, DealStatus.LOST}),
    DealStatus.ON_HOLD: frozenset({DealStatus.FOLLOWING_UP, DealStatus.WON, DealStatus.LOST}),
    DealStatus.WON: frozenset({DealStatus.FOLLOWING_UP}),
    DealStatus.LOST: frozenset({DealStatus.FOLLOWING_UP}),
}


@dataclass(frozen=True)
class StatusContext:
    closing_value: Decimal | None = None
    lost_reason: str | None = None


def can_transition(current: DealStatus, target: DealStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def allowed_targets(current: DealStatus) -> list[DealStatus]:
    return sorted(ALLOWED_TRANSITIONS.get(current, frozenset()), key=lambda s: s.value)


def change_status(
    deal: Deal,
    target: DealStatus | str,
    context: StatusContext | None = None,
    *,
    now: datetime | None = None,
) -> DealEvent:
    """Move ``deal`` to ``target`` and return the event that records it.

    The deal is only mutated once every check has passed.
    """
    context = context or StatusContext()
    target = _coerce_status(target)
    current = deal.status
    if not can_transition(current, target):
        raise ValidationError(
            f"Cannot move deal from {current.value} to {target.value}."
        )

    closing_value = None
    lost_reason = None
    if target is DealStatus.WON:
        closing_value = rules.require_non_negative(context.closing_value, "closing_value")
    if target is DealStatus.LOST:
        rules.require(context.lost_reason, "lost_reason")
        rules.validate_enum(context.lost_reason, [r.value for r in LostReason], "lost_reason")
        lost_reason = LostReason(context.lost_reason).value

    deal.status = target
    if target in FROZEN_STATUSES:
        deal.next_follow_up = None
    if target is DealStatus.WON:
        deal.closing_value = closing_value
    if target is DealStatus.LOST:
        deal.lost_reason = lost_reason
    if current in FROZEN_STATUSES and target is DealStatus.FOLLOWING_UP:
        # Reactivated deals start without a schedule or an outcome.
        deal.closing_value = None
        deal.lost_reason = None

    return DealEvent(
        kind=DealEventKind.STATUS_CHANGED,
        occurred_at=now or datetime.now(UTC).replace(microsecond=0),
        status=target,
        next_follow_up=deal.next_follow_up,
        closing_value=closing_value,
        lost_reason=lost_reason,
    )


def _coerce_status(value: DealStatus | str) -> DealStatus:
    if isinstance(value, DealStatus):
        return value
    rules.validate_enum(value, [s.value for s in DealStatus], "status")
    return DealStatus(value)
