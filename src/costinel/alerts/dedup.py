from __future__ import annotations

import threading
import time
from typing import Callable, Optional

import structlog

log = structlog.get_logger("dedup")

CooldownKey = tuple[str, str]  # (subject_id, signature)


class CooldownDeduper:
    """
    Per (subject, condition-signature) cooldown cache.

    should_notify() answers "announce this again?" and, when the answer is yes,
    stamps the key with the current time. Check and stamp happen under one lock,
    so two pipelines racing on the same key cannot both get True.

    State lives for the life of the object. Cross-restart persistence is left
    to an injected store using snapshot()/restore().
    """
    def __init__(self, default_cooldown_s: float = 3600.0, clock: Optional[Callable[[], float]] = None):
        self.default_cooldown_s = float(default_cooldown_s)
        self._clock = clock or time.time
        self._store: dict[CooldownKey, float] = {}  # key -> last notify epoch
        self._lock = threading.Lock()

    def _now(self) -> float:
        return self._clock()

    def should_notify(self, subject_id: str, signature: str, cooldown_s: Optional[float] = None) -> bool:
        cooldown = self.default_cooldown_s if cooldown_s is None else float(cooldown_s)
        key = (subject_id, signature)
        with self._lock:
            now = self._now()
            last = self._store.get(key)
            if last is not None and now - last <= cooldown:
                log.debug("cooldown_active", subject=subject_id, signature=signature,
                          remaining_s=round(cooldown - (now - last), 3))
                return False
            self._store[key] = now
            return True

    def last_notified(self, subject_id: str, signature: str) -> Optional[float]:
        with self._lock:
            return self._store.get((subject_id, signature))

    def __len__(self) -> int:
        return len(self._store)

    # --- persistence hooks ---

    def snapshot(self) -> dict[CooldownKey, float]:
        with self._lock:
            return dict(self._store)

    def restore(self, entries: dict[CooldownKey, float]) -> None:
        """Merge persisted entries; the newer timestamp wins per key."""
        with self._lock:
            for key, ts in entries.items():
                cur = self._store.get(key)
                if cur is None or ts > cur:
                    self._store[key] = float(ts)
