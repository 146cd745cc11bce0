"""
Core Utilities

Shared helpers used across the application.
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP


CENT = Decimal("0.01")


def utcnow() -> datetime:
    """
    Return timezone-aware UTC datetime.

    Use this instead of datetime.utcnow() which returns naive datetime.
    """
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from a DB without tz support) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_money(amount) -> Decimal:
    """Quantize an amount to cents, rounding half up."""
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def money_to_cents(amount) -> int:
    """Convert a currency amount to integer cents."""
    if amount is None:
        return 0
    return int(to_money(amount) * 100)
