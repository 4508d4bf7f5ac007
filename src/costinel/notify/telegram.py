from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from costinel.utils.backoff import backoff_iter, jitter
from costinel.utils.errors import ConfigurationError

log = structlog.get_logger("telegram")

# --------- small rate limiter (token bucket) ----------

class RateLimiter:
    def __init__(self, rate_per_sec: float, burst: int = 1):
        self.rate = float(rate_per_sec)
        self.capacity = int(burst)
        self.tokens = float(burst)
        self.updated: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self):
        async with self._lock:
            loop = asyncio.get_running_loop()
            now = loop.time()
            if self.updated is None:
                self.updated = now
            # refill
            self.tokens = min(self.capacity, self.tokens + (now - self.updated) * self.rate)
            self.updated = now
            # wait if no token
            if self.tokens < 1.0:
                needed = 1.0 - self.tokens
                await asyncio.sleep(needed / self.rate)
                self.updated = loop.time()
                self.tokens = 1.0
            self.tokens -= 1.0

# --------- config & channel ----------

@dataclass(slots=True)
class TelegramConfig:
    bot_token: str
    chat_id: str                # personal chat id or group id
    parse_mode: Optional[str] = "HTML"  # "HTML" or "MarkdownV2" or None
    disable_web_page_preview: bool = False
    timeout_s: float = 8.0
    per_chat_rate_per_sec: float = 1.0
    per_chat_burst: int = 3
    max_retries: int = 5
    initial_backoff_s: float = 0.5
    max_backoff_s: float = 8.0
    api_base: str = "https://api.telegram.org"


def config_from_env() -> TelegramConfig:
    """Build a TelegramConfig from TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID; raises if missing."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
    chat_id = os.getenv("TELEGRAM_CHAT_ID", "").strip()
    if not token or not chat_id:
        raise ConfigurationError("TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID must both be set")
    return TelegramConfig(
        bot_token=token,
        chat_id=chat_id,
        parse_mode=os.getenv("TELEGRAM_PARSE_MODE", "HTML") or None,
    )


class TelegramChannel:
    """
    Message channel backed by the Bot API sendMessage call, with rate
    limiting and retry w/ backoff. send() reports delivery as a bool.
    """
    name = "telegram"

    def __init__(self, cfg: TelegramConfig, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg
        self._session = session
        self._owns_session = session is None
        self._rl = RateLimiter(rate_per_sec=cfg.per_chat_rate_per_sec, burst=cfg.per_chat_burst)

    async def start(self):
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True

    async def stop(self):
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def send(self, text: str) -> bool:
        if self._session is None:
            await self.start()
        await self._rl.acquire()
        return await self._send(text)

    async def _send(self, text: str) -> bool:
        assert self._session is not None
        url = f"{self.cfg.api_base}/bot{self.cfg.bot_token}/sendMessage"
        payload = {"chat_id": self.cfg.chat_id, "text": text}
        if self.cfg.parse_mode:
            payload["parse_mode"] = self.cfg.parse_mode
        if self.cfg.disable_web_page_preview:
            payload["disable_web_page_preview"] = "true"

        delays = backoff_iter(self.cfg.initial_backoff_s, self.cfg.max_backoff_s)
        for attempt in range(1, self.cfg.max_retries + 1):
            backoff = next(delays)
            try:
                async with self._session.post(url, data=payload) as resp:
                    if resp.status == 200:
                        return True
                    # 429 or 5xx → retry with backoff
                    detail = await _maybe_text(resp)
                    log.warning("telegram_send_failed", status=resp.status, body=detail, attempt=attempt)
                    if attempt == self.cfg.max_retries:
                        break
                    if resp.status == 429:
                        # Telegram may include retry_after (seconds)
                        ra = await _retry_after(resp)
                        if ra:
                            await asyncio.sleep(ra)
                            continue
                    if 500 <= resp.status < 600 or resp.status == 429:
                        await asyncio.sleep(jitter(backoff))
                        continue
                    # other 4xx: don't retry
                    return False
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                log.warning("telegram_network_error", err=str(e), attempt=attempt)
                if attempt == self.cfg.max_retries:
                    break
                await asyncio.sleep(jitter(backoff))
        log.error("telegram_give_up_after_retries", attempts=self.cfg.max_retries)
        return False


async def _maybe_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except (aiohttp.ClientError, UnicodeDecodeError):
        return "<no body>"


async def _retry_after(resp: aiohttp.ClientResponse) -> Optional[float]:
    try:
        data = await resp.json(content_type=None)
    except (aiohttp.ClientError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    ra = (data.get("parameters") or {}).get("retry_after")
    return float(ra) if ra else None
