from __future__ import annotations

from enum import Enum


class DealStatus(str, Enum):
    SENT = "sent"
    FOLLOWING_UP = "following_up"
    ON_HOLD = "on_hold"
    WON = "won"
    LOST = "lost"


ACTIVE_STATUSES = frozenset({DealStatus.SENT, DealStatus.FOLLOWING_UP})
FROZEN_STATUSES = frozenset({DealStatus.ON_HOLD, DealStatus.WON, DealStatus.LOST})


class InteractionStatus(str, Enum):
    COMPLETED = "completed"
    RESCHEDULED = "rescheduled"
    WAITING_RESPONSE = "waiting_response"


class LostReason(str, Enum):
    PRICE = "price"
    COMPETITION = "competition"
    TIMING = "timing"
    NO_BUDGET = "no_budget"
    POOR_FIT = "poor_fit"
    NO_RESPONSE = "no_response"
    OTHER = "other"


class SellerRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    SALESPERSON = "salesperson"


class ActivityStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    IDLE = "idle"


class TaskSource(str, Enum):
    FOLLOW_UP = "follow_up"
    REMINDER = "reminder"


class NotificationKind(str, Enum):
    OVERDUE = "overdue"
    TODAY = "today"


class LeaderboardMetric(str, Enum):
    WON_VALUE = "won_value"
    WON_COUNT = "won_count"
    DEALS_CREATED = "deals_created"


class DealEventKind(str, Enum):
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    FOLLOW_UP_ADDED = "follow_up_added"
