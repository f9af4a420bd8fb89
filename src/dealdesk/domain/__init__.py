from dealdesk.domain.models import (
    Client,
    Deal,
    DealEvent,
    FollowUp,
    Reminder,
    Seller,
    UnifiedTask,
)
from dealdesk.domain.moment import Precision, ScheduleMoment
from dealdesk.domain.rules import NotFoundError, ValidationError

__all__ = [
    "Client",
    "Deal",
    "DealEvent",
    "FollowUp",
    "NotFoundError",
    "Precision",
    "Reminder",
    "ScheduleMoment",
    "Seller",
    "UnifiedTask",
    "ValidationError",
]
