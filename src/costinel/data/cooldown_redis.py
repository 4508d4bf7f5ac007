from __future__ import annotations

import json
from typing import Optional

import redis.asyncio as redis
import structlog

from costinel.alerts.dedup import CooldownDeduper, CooldownKey
from costinel.utils.time import utc_now_s

log = structlog.get_logger("cooldown_store")


def _field(key: CooldownKey) -> str:
    return json.dumps(list(key), ensure_ascii=False)


def _key(field: str | bytes) -> Optional[CooldownKey]:
    if isinstance(field, (bytes, bytearray)):
        field = field.decode("utf-8")
    try:
        sid, sig = json.loads(field)
    except (ValueError, TypeError):
        return None
    return str(sid), str(sig)


class RedisCooldownStore:
    """
    Optional persistence for CooldownDeduper, so a short-lived process run
    from an external timer still honours cooldowns between runs.

    Layout: one hash `{prefix}` mapping json([subject_id, signature]) -> epoch.
    Entries older than `ttl_s` (and unreadable ones) are deleted on load.
    """
    def __init__(self, url: str, prefix: str = "costinel:cooldown", ttl_s: float = 7 * 86_400):
        self.url = url
        self.prefix = prefix
        self.ttl_s = ttl_s
        self._r: Optional[redis.Redis] = None

    async def start(self) -> None:
        if self._r is None:
            self._r = redis.from_url(self.url, decode_responses=True)

    async def stop(self) -> None:
        if self._r is not None:
            await self._r.aclose()
            self._r = None

    async def load_into(self, deduper: CooldownDeduper, now: float) -> int:
        await self.start()
        assert self._r is not None
        raw = await self._r.hgetall(self.prefix) or {}
        entries: dict[CooldownKey, float] = {}
        stale: list[str] = []
        for field, val in raw.items():
            key = _key(field)
            try:
                ts = float(val)
            except (TypeError, ValueError):
                ts = None
            if key is None or ts is None or now - ts > self.ttl_s:
                stale.append(field)
                continue
            entries[key] = ts
        if stale:
            await self._r.hdel(self.prefix, *stale)
        deduper.restore(entries)
        log.info("cooldowns_restored", entries=len(entries), pruned=len(stale))
        return len(entries)

    async def save_from(self, deduper: CooldownDeduper, now: Optional[float] = None) -> int:
        await self.start()
        assert self._r is not None
        now = utc_now_s() if now is None else now
        fresh: dict[str, str] = {}
        expired: list[str] = []
        for k, ts in deduper.snapshot().items():
            if now - ts > self.ttl_s:
                expired.append(_field(k))
            else:
                fresh[_field(k)] = repr(ts)
        if expired:
            await self._r.hdel(self.prefix, *expired)
        if fresh:
            await self._r.hset(self.prefix, mapping=fresh)
        return len(fresh)
