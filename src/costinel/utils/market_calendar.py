from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

import aiohttp
import structlog

from costinel.utils.errors import CalendarUnavailable
from costinel.utils.time import SHANGHAI, hhmm, shanghai_now

log = structlog.get_logger("market_calendar")

# SSE/SZSE continuous auction sessions, inclusive, as hour*100+minute
MORNING = (930, 1130)
AFTERNOON = (1300, 1500)

REASON_WEEKEND = "weekend"
REASON_OUTSIDE_HOURS = "outside trading hours"


class CalendarSource(Protocol):
    async def off_days(self, year: int) -> dict[str, str]:
        """{'2025-10-01': 'National Day', ...}; raises CalendarUnavailable."""
        ...


class HolidayCnCalendar:
    """
    Mainland China public-holiday calendar from the holiday-cn dataset.
    Each year file lists `days` with `date`, `name` and `isOffDay`; make-up
    working days (isOffDay false) are ignored.
    """
    URL = "https://raw.githubusercontent.com/NateScarlet/holiday-cn/master/{year}.json"

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, timeout_s: float = 10.0,
                 url_template: Optional[str] = None):
        self._session = session
        self._timeout_s = timeout_s
        self._url = url_template or self.URL

    async def off_days(self, year: int) -> dict[str, str]:
        url = self._url.format(year=year)
        try:
            if self._session is not None:
                data = await self._get(self._session, url)
            else:
                timeout = aiohttp.ClientTimeout(total=self._timeout_s)
                async with aiohttp.ClientSession(timeout=timeout) as s:
                    data = await self._get(s, url)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise CalendarUnavailable(f"holiday calendar {year}: {e or type(e).__name__}") from e

        days = data.get("days") if isinstance(data, dict) else None
        if not isinstance(days, list):
            raise CalendarUnavailable(f"holiday calendar {year}: missing 'days'")
        return {
            str(d["date"]): str(d.get("name", "holiday"))
            for d in days
            if isinstance(d, dict) and d.get("isOffDay") and "date" in d
        }

    @staticmethod
    async def _get(session: aiohttp.ClientSession, url: str):
        async with session.get(url) as resp:
            resp.raise_for_status()
            # raw.githubusercontent serves text/plain
            return await resp.json(content_type=None)


def in_trading_hours(t: int) -> bool:
    """True if hour*100+minute falls in a session window (both ends inclusive)."""
    return MORNING[0] <= t <= MORNING[1] or AFTERNOON[0] <= t <= AFTERNOON[1]


def _localize(dt: datetime) -> datetime:
    # naive datetimes are taken as Shanghai wall-clock time
    if dt.tzinfo is None:
        return dt.replace(tzinfo=SHANGHAI)
    return dt.astimezone(SHANGHAI)


@dataclass(frozen=True, slots=True)
class GateDecision:
    open: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.open


class MarketGate:
    """
    Decides whether the A-share market is trading right now.

    Order: weekend, then holiday calendar, then intraday windows. If the
    calendar cannot be fetched the holiday rule is skipped (fail open) so a
    calendar outage never stops monitoring on a normal weekday.
    """
    def __init__(self, calendar: CalendarSource, clock: Optional[Callable[[], datetime]] = None):
        self.calendar = calendar
        self._clock = clock or shanghai_now
        self._cache: dict[int, dict[str, str]] = {}

    def _now(self) -> datetime:
        return _localize(self._clock())

    async def _off_days(self, year: int) -> Optional[dict[str, str]]:
        cached = self._cache.get(year)
        if cached is not None:
            return cached
        try:
            days = await self.calendar.off_days(year)
        except CalendarUnavailable as e:
            log.warning("calendar_unavailable_fail_open", year=year, err=str(e))
            return None
        self._cache[year] = days
        return days

    async def check(self, now: Optional[datetime] = None) -> GateDecision:
        now = self._now() if now is None else _localize(now)
        off_days = await self._off_days(now.year)

        if now.weekday() >= 5:
            return GateDecision(False, REASON_WEEKEND)

        if off_days:
            name = off_days.get(now.date().isoformat())
            if name is not None:
                return GateDecision(False, name)

        if not in_trading_hours(hhmm(now)):
            return GateDecision(False, REASON_OUTSIDE_HOURS)

        return GateDecision(True)
