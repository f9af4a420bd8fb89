from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal


def utc_now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def format_amount(value: Decimal | None) -> str:
    if value is None:
        return "N/A"
    return f"{value:,.2f}"


def format_percent(ratio: float | None, *, scale: float = 100.0) -> str:
    if ratio is None:
        return "N/A"
    return f"{ratio * scale:.1f}%"
