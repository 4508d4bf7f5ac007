import asyncio
from typing import Optional

from costinel.utils.errors import CalendarUnavailable
from costinel.utils.types import Sample


class FakeClock:
    """Manually advanced epoch clock for cooldown tests."""
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChannel:
    """
    Records every message. `ok` controls the send() result; `exc` makes it raise.
    `delay` lets a test hold the channel open.
    """
    def __init__(self, name: str = "fake", ok: bool = True, exc: Optional[Exception] = None, delay: float = 0.0):
        self.name = name
        self.ok = ok
        self.exc = exc
        self.delay = delay
        self.sent: list[str] = []
        self.finished = 0

    async def send(self, text: str) -> bool:
        self.sent.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished += 1
        if self.exc is not None:
            raise self.exc
        return self.ok


class FakeCalendar:
    def __init__(self, days: Optional[dict] = None, fail: bool = False):
        self.days = days or {}
        self.fail = fail
        self.calls: list[int] = []

    async def off_days(self, year: int) -> dict:
        self.calls.append(year)
        if self.fail:
            raise CalendarUnavailable("calendar host unreachable")
        return dict(self.days)


class FakeExtractor:
    """url -> inner text (None means selector matched nothing)."""
    def __init__(self, pages: dict):
        self.pages = pages
        self.calls: list[tuple] = []

    async def extract(self, url: str, selector: str, wait_s: float = 3.0):
        self.calls.append((url, selector, wait_s))
        return self.pages.get(url)


class ScriptedSource:
    """
    fetch_sample stand-in: per subject id, a list of Samples or exceptions
    returned in turn (the last entry repeats).
    """
    def __init__(self, script: dict):
        self.script = {k: list(v) for k, v in script.items()}
        self.calls: dict[str, int] = {}

    async def __call__(self, subject) -> Sample:
        n = self.calls.get(subject.id, 0)
        self.calls[subject.id] = n + 1
        seq = self.script[subject.id]
        item = seq[min(n, len(seq) - 1)]
        if isinstance(item, BaseException):
            raise item
        return item


def stock_sample(code: str = "SZ002261", value: float = 10.0, pct: float = 0.0, **kw) -> Sample:
    return Sample(code=code, name=kw.pop("name", "Talkweb"), value=value, percent_change=pct,
                  previous_close=kw.pop("previous_close", 9.8), open=kw.pop("open", 9.9),
                  high=kw.pop("high", 10.2), low=kw.pop("low", 9.7), observed_at=1_700_000_000.0, **kw)


async def no_sleep(_s: float) -> None:
    return None
