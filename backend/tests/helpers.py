"""Shared test helpers."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock


T0 = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)


def result_with(scalar=None, rows=None, first=None, scalars=None) -> MagicMock:
    """Fake AsyncSession.execute() result."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.all.return_value = rows or []
    result.first.return_value = first
    result.scalars.return_value.all.return_value = scalars or []
    return result


def minutes_after(start: datetime, minutes: float) -> datetime:
    return start + timedelta(minutes=minutes)


def hours_ago(hours: float, minutes: float = 0) -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=hours, minutes=minutes)
