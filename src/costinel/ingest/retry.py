from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from costinel.utils.backoff import fixed_iter
from costinel.utils.errors import ConfigurationError, FetchError

T = TypeVar("T")

log = structlog.get_logger("fetch")


@dataclass(slots=True)
class RetryConfig:
    max_attempts: int = 3
    delay_s: float = 2.0             # fixed pause between attempts
    timeout_s: Optional[float] = 30.0  # per attempt; None disables

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_s < 0:
            raise ValueError("delay_s cannot be negative")


class RetryingFetcher:
    """
    Run a zero-arg coroutine factory with bounded retry.

    Every exception counts as a failed attempt (bad status, transport error,
    timeout, malformed payload) except ConfigurationError, which no retry can
    fix and is re-raised untouched. When the budget is spent the last error
    is wrapped in FetchError.
    """
    def __init__(self, cfg: Optional[RetryConfig] = None, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.cfg = cfg or RetryConfig()
        self._sleep = sleep

    async def fetch(
        self,
        request: Callable[[], Awaitable[T]],
        *,
        label: str = "",
        max_attempts: Optional[int] = None,
        delay_s: Optional[float] = None,
    ) -> T:
        attempts = self.cfg.max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        delays = fixed_iter(self.cfg.delay_s if delay_s is None else delay_s)

        last: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            try:
                if self.cfg.timeout_s is None:
                    return await request()
                return await asyncio.wait_for(request(), timeout=self.cfg.timeout_s)
            except ConfigurationError:
                raise
            except Exception as e:
                last = e
                if attempt >= attempts:
                    break
                pause = next(delays)
                log.warning("fetch_retry", subject=label, attempt=attempt,
                            err=str(e) or type(e).__name__, delay_s=pause)
                await self._sleep(pause)

        assert last is not None
        log.error("fetch_give_up", subject=label, attempts=attempts, err=str(last) or type(last).__name__)
        raise FetchError(last, attempts=attempts) from last
