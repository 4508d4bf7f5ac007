from __future__ import annotations

import time
from datetime import datetime
from zoneinfo import ZoneInfo

SHANGHAI = ZoneInfo("Asia/Shanghai")


def utc_now_s() -> float:
    """Unix epoch seconds (float)."""
    return time.time()


def shanghai_now() -> datetime:
    return datetime.now(tz=SHANGHAI)


def hhmm(dt: datetime) -> int:
    """Time of day encoded as hour*100+minute (09:30 -> 930)."""
    return dt.hour * 100 + dt.minute
