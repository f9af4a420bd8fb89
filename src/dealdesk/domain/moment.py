"""Dates that know whether they carry a time of day.

A follow-up scheduled for "the 15th" and one scheduled for "the 15th at
09:30" land in the same bucket when triaging work; only their display
differs. ``ScheduleMoment`` keeps that distinction explicit instead of
guessing it from string contents.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, tzinfo
from enum import Enum

from dealdesk.domain.rules import ValidationError

REFERENCE_TZ: tzinfo = UTC


class Precision(str, Enum):
    DATE = "date"
    INSTANT = "instant"


@dataclass(frozen=True)
class ScheduleMoment:
    precision: Precision
    value: date | datetime

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "precision", Precision(self.precision))
        except ValueError as exc:
            raise ValidationError(f"Unknown precision: {self.precision!r}") from exc
        if self.precision is Precision.DATE:
            if isinstance(self.value, datetime) or not isinstance(self.value, date):
                raise ValidationError("date-precision moments hold a calendar date.")
        elif self.precision is Precision.INSTANT:
            if not isinstance(self.value, datetime):
                raise ValidationError("instant-precision moments hold a datetime.")
            if self.value.tzinfo is None:
                # Stored instants are UTC; a naive value is read the same way.
                object.__setattr__(self, "value", self.value.replace(tzinfo=UTC))

    @classmethod
    def on(cls, day: date) -> ScheduleMoment:
        return cls(Precision.DATE, day)

    @classmethod
    def at(cls, instant: datetime) -> ScheduleMoment:
        return cls(Precision.INSTANT, instant)

    @property
    def is_date_only(self) -> bool:
        return self.precision is Precision.DATE

    def to_date(self, tz: tzinfo = REFERENCE_TZ) -> date:
        if self.precision is Precision.DATE:
            return self.value
        return self.value.astimezone(tz).date()

    def to_instant(self, tz: tzinfo = REFERENCE_TZ) -> datetime:
        """Full instant; date-only moments become midnight in ``tz``."""
        if self.precision is Precision.DATE:
            return datetime.combine(self.value, time.min, tzinfo=tz)
        return self.value

    def isoformat(self) -> str:
        return self.value.isoformat()

    def display(self, tz: tzinfo = REFERENCE_TZ) -> str:
        if self.precision is Precision.DATE:
            return self.value.isoformat()
        return self.value.astimezone(tz).strftime("%Y-%m-%d %H:%M")

    @classmethod
    def from_storage(cls, precision: str | None, value: str | None) -> ScheduleMoment | None:
        if value is None:
            return None
        if precision is None:
            raise ValidationError("Stored moment is missing its precision.")
        kind = Precision(precision)
        if kind is Precision.DATE:
            return cls.on(date.fromisoformat(value))
        return cls.at(datetime.fromisoformat(value))

    def to_storage(self) -> tuple[str, str]:
        return self.precision.value, self.isoformat()


def today(now: datetime | None = None, tz: tzinfo = REFERENCE_TZ) -> date:
    current = now or datetime.now(UTC)
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    return current.astimezone(tz).date()


def moment_from_input(
    day: date | None, instant: datetime | None, field: str
) -> ScheduleMoment | None:
    """Build a moment from the separate date / instant inputs of a command."""
    if day is not None and instant is not None:
        raise ValidationError(f"Give either a date or a time for {field}, not both.")
    if instant is not None:
        return ScheduleMoment.at(instant)
    if day is not None:
        return ScheduleMoment.on(day)
    return None
