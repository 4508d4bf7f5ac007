from __future__ import annotations

import asyncio
from typing import Iterable, Protocol, Sequence

import structlog

from costinel.utils.errors import NotificationError

log = structlog.get_logger("fanout")


class MessageChannel(Protocol):
    name: str

    async def send(self, text: str) -> bool:
        ...


class NotificationFanout:
    """
    Deliver one message to every channel at once.

    send() returns True as soon as any channel accepts; the remaining
    attempts keep running in the background (see drain()). A channel that
    raises or returns False is logged and otherwise ignored.
    """
    def __init__(self, channels: Iterable[MessageChannel]):
        self.channels: Sequence[MessageChannel] = tuple(channels)
        self._inflight: set[asyncio.Task] = set()

    @property
    def names(self) -> list[str]:
        return [c.name for c in self.channels]

    async def _deliver(self, channel: MessageChannel, text: str) -> bool:
        try:
            ok = await channel.send(text)
            if not ok:
                raise NotificationError(f"{channel.name} rejected the message")
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("channel_send_failed", channel=channel.name, err=str(e) or type(e).__name__)
            return False

    async def send(self, text: str) -> bool:
        if not self.channels:
            log.warning("no_channels_configured")
            return False

        pending = set()
        for ch in self.channels:
            task = asyncio.create_task(self._deliver(ch, text), name=f"notify-{ch.name}")
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            pending.add(task)

        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            if any(t.result() for t in done):
                return True
        log.error("all_channels_failed", channels=self.names)
        return False

    async def drain(self) -> None:
        """Wait for deliveries still running after send() returned."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
