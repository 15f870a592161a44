"""Session registry — live dashboard channels, tagged by account.

Learn: Each open /events stream registers one SessionChannel here. When a
transaction lands, fan_out_to_account() pushes the event to every channel
of the owning account (a user with three tabs open gets three pushes).

Concurrency rules:
- register/unregister/snapshot all take the same asyncio.Lock, so a
  fan-out never sees a half-updated registry
- pushes happen outside the lock; right before each push the handle is
  re-checked, and unregister() closes the channel, so a session that
  disconnects mid fan-out is skipped instead of written to
- a channel that errors is skipped, the rest still get the event
- nothing waits for the browser: delivery is best-effort, at most once
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

logger = structlog.get_logger()


class PushDeliveryError(Exception):
    """A frame could not be queued on a dashboard channel."""


def format_sse(data: dict[str, Any]) -> str:
    """One Server-Sent Events frame carrying `data` as JSON."""
    return f"data: {json.dumps(data, separators=(',', ':'), default=str)}\n\n"


KEEPALIVE_FRAME = ": keepalive\n\n"


class SessionChannel:
    """Bounded outbound queue of SSE frames for one browser connection.

    The serving layer owns the HTTP response and drains the queue; the
    registry only ever pushes. A full queue means the client stopped
    reading, which is treated as a failed push rather than back-pressure.
    """

    def __init__(self, maxsize: int = 100):
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, frame: str) -> None:
        if self._closed:
            raise PushDeliveryError("channel closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            raise PushDeliveryError("channel backlog full")

    async def receive(self, timeout: Optional[float] = None) -> Optional[str]:
        """Next frame; None once closed. Raises TimeoutError on `timeout`."""
        if self._closed and self._queue.empty():
            return None
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)  # wake a pending receive()
        except asyncio.QueueFull:
            pass


@dataclass
class _Entry:
    account_id: str
    channel: SessionChannel


@dataclass
class FanOutReport:
    delivered: int = 0
    skipped: list[str] = field(default_factory=list)


class SessionRegistry:
    def __init__(self):
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    async def register(
        self, handle: str, account_id: str, channel: SessionChannel
    ) -> None:
        async with self._lock:
            previous = self._entries.get(handle)
            self._entries[handle] = _Entry(account_id=str(account_id), channel=channel)
        if previous is not None and previous.channel is not channel:
            previous.channel.close()
        logger.info("registry.registered", handle=handle, account_id=str(account_id))

    async def unregister(self, handle: str) -> None:
        """Drop a session. Unknown handles are ignored."""
        async with self._lock:
            entry = self._entries.pop(handle, None)
        if entry is None:
            return
        entry.channel.close()
        logger.info("registry.unregistered", handle=handle, account_id=entry.account_id)

    async def count(self, account_id: Optional[str] = None) -> int:
        async with self._lock:
            if account_id is None:
                return len(self._entries)
            return sum(1 for e in self._entries.values() if e.account_id == str(account_id))

    async def fan_out_to_account(
        self, account_id: str, event: dict[str, Any]
    ) -> FanOutReport:
        account_id = str(account_id)
        async with self._lock:
            targets = [
                (handle, entry.channel)
                for handle, entry in self._entries.items()
                if entry.account_id == account_id
            ]

        frame = format_sse(event)
        report = FanOutReport()
        for handle, channel in targets:
            if not await self._is_current(handle, channel):
                continue
            try:
                await channel.send(frame)
            except PushDeliveryError as e:
                report.skipped.append(handle)
                logger.warning("registry.push_skipped", handle=handle, error=str(e))
                continue
            report.delivered += 1
        return report

    async def close_all(self) -> None:
        async with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            entry.channel.close()

    async def _is_current(self, handle: str, channel: SessionChannel) -> bool:
        async with self._lock:
            entry = self._entries.get(handle)
        return entry is not None and entry.channel is channel
