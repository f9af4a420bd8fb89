from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from dealdesk.domain.moment import ScheduleMoment
from dealdesk.domain.stages import (
    DealEventKind,
    DealStatus,
    InteractionStatus,
    SellerRole,
    TaskSource,
)


@dataclass(frozen=True)
class Seller:
    seller_id: str
    name: str
    role: SellerRole
    monthly_goal: Decimal | None = None


@dataclass(frozen=True)
class Client:
    client_id: str
    name: str
    cnpj: str | None = None
    address: str | None = None


@dataclass(frozen=True)
class FollowUp:
    follow_up_id: str
    moment: ScheduleMoment
    notes: str
    interaction_status: InteractionStatus = InteractionStatus.WAITING_RESPONSE
    audio_ref: str | None = None


@dataclass
class Deal:
    deal_id: str
    client_id: str
    seller_id: str | None
    title: str
    value: Decimal
    date_sent: ScheduleMoment
    status: DealStatus = DealStatus.SENT
    contact_id: str | None = None
    next_follow_up: ScheduleMoment | None = None
    follow_ups: list[FollowUp] = field(default_factory=list)
    lost_reason: str | None = None
    closing_value: Decimal | None = None
    observations: str | None = None

    @property
    def realized_value(self) -> Decimal:
        """Amount a win is booked at: the confirmed closing value when known."""
        return self.closing_value if self.closing_value is not None else self.value


@dataclass(frozen=True)
class Reminder:
    reminder_id: str
    title: str
    moment: ScheduleMoment
    is_completed: bool = False
    is_dismissed: bool = False


@dataclass(frozen=True)
class DealEvent:
    kind: DealEventKind
    occurred_at: datetime
    status: DealStatus
    next_follow_up: ScheduleMoment | None = None
    closing_value: Decimal | None = None
    lost_reason: str | None = None
    follow_up: FollowUp | None = None


@dataclass(frozen=True)
class UnifiedTask:
    source_id: str
    source_kind: TaskSource
    moment: ScheduleMoment
    title: str
    is_overdue: bool
    is_today: bool
    client_id: str | None = None
    value: Decimal | None = None

    @property
    def is_upcoming(self) -> bool:
        return not self.is_overdue and not self.is_today
