"""Time utilities (UTC now, settlement timezone, elapsed milliseconds)."""
from __future__ import annotations
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def settlement_tz(name: str) -> ZoneInfo:
    return ZoneInfo(name)

def ensure_aware(value: datetime, tz=timezone.utc) -> datetime:
    """Attach ``tz`` to naive datetimes (sqlite hands them back naive)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value

def elapsed_ms(start: float, end: float) -> float:
    return round((end - start) * 1000, 2)

__all__ = ["utc_now", "settlement_tz", "ensure_aware", "elapsed_ms"]
