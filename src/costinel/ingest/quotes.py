from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from costinel.ingest import parser
from costinel.utils.types import Sample


@dataclass(slots=True)
class QuoteSourceConfig:
    base_url: str = "https://qt.gtimg.cn/q="
    encoding: str = "gbk"
    timeout_s: float = 10.0
    user_agent: str = "Mozilla/5.0 (X11; Linux x86_64) costinel"


class TencentQuoteSource:
    """
    Realtime A-share quotes from the Tencent quote endpoint.
    Codes are exchange-prefixed ("SZ002261", "SH600519").

    Usage:
        src = TencentQuoteSource()
        await src.start()
        sample = await src.quote("SZ002261")
        await src.stop()
    """
    def __init__(self, cfg: Optional[QuoteSourceConfig] = None, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg or QuoteSourceConfig()
        self._session = session
        self._owns_session = session is None
        self._log = structlog.get_logger("quotes")

    async def start(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout, headers={"User-Agent": self.cfg.user_agent})
            self._owns_session = True

    async def stop(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def quote(self, code: str) -> Sample:
        if self._session is None:
            await self.start()
        assert self._session is not None
        url = f"{self.cfg.base_url}{code.lower()}"
        async with self._session.get(url) as resp:
            resp.raise_for_status()
            raw = await resp.read()
        text = raw.decode(self.cfg.encoding, errors="replace")
        sample = parser.parse_quote(text, code=code)
        self._log.debug("quote", code=code, price=sample.value, pct=sample.percent_change)
        return sample
