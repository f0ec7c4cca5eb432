"""Settlement window computation.

A run always settles the calendar day before the run date, evaluated in the
configured settlement timezone. The window is half-open: ``[start, end)``
where ``end`` is the following midnight, so payments stamped anywhere in
23:59:59.xxx still land in the right day.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional

from settlement_system.config import SETTLEMENT_SETTINGS
from settlement_system.utils.time import settlement_tz, utc_now


@dataclass(frozen=True, slots=True)
class SettlementWindow:
    start: datetime
    end: datetime
    settlement_date: date

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def previous_day_window(now: Optional[datetime] = None, *, tz: Optional[tzinfo] = None) -> SettlementWindow:
    """Window for "yesterday" relative to ``now``.

    Naive ``now`` values are read as wall-clock time in the settlement timezone.
    """
    tz = tz or settlement_tz(str(SETTLEMENT_SETTINGS["timezone"]))
    now = now or utc_now()
    local_now = now.replace(tzinfo=tz) if now.tzinfo is None else now.astimezone(tz)

    run_date = local_now.date()
    settlement_date = run_date - timedelta(days=1)
    start = datetime.combine(settlement_date, time.min, tzinfo=tz)
    end = datetime.combine(run_date, time.min, tzinfo=tz)
    return SettlementWindow(start=start, end=end, settlement_date=settlement_date)


__all__ = ["SettlementWindow", "previous_day_window"]
