"""Server-Sent Events endpoint — live transaction feed for the dashboard.

Learn: The browser opens `new EventSource("/api/v1/events?token=...")`.
For as long as that HTTP response stays open, this handler:
1. Registers a SessionChannel tagged with the caller's account id
2. Streams every frame the registry pushes into it
3. Sends a keepalive comment when idle, so proxies don't cut the line
4. Unregisters on client disconnect, server shutdown or cancellation

Unregistering only stops future pushes to this tab; it never touches an
in-flight ledger write or MQTT publish.
"""

import asyncio
import uuid
from typing import AsyncIterator, Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from payrelay.auth.dependencies import CurrentAccount, get_stream_account
from payrelay.config import settings
from payrelay.realtime.registry import KEEPALIVE_FRAME, SessionChannel, SessionRegistry

logger = structlog.get_logger()
router = APIRouter()

CONNECTED_FRAME = ": connected\n\n"


async def event_stream(
    registry: SessionRegistry,
    account_id: str,
    is_disconnected: Callable[[], Awaitable[bool]],
    *,
    handle: str | None = None,
    channel: SessionChannel | None = None,
    keepalive: float | None = None,
) -> AsyncIterator[str]:
    """Register a session and yield its SSE frames until the client goes away."""
    handle = handle or uuid.uuid4().hex
    channel = channel or SessionChannel(maxsize=settings.sse_queue_size)
    keepalive = keepalive or settings.sse_keepalive_seconds

    await registry.register(handle, account_id, channel)
    try:
        yield CONNECTED_FRAME
        while True:
            if await is_disconnected():
                break
            try:
                frame = await channel.receive(timeout=keepalive)
            except asyncio.TimeoutError:
                yield KEEPALIVE_FRAME
                continue
            if frame is None:
                break  # channel closed by unregister / shutdown
            yield frame
    finally:
        await registry.unregister(handle)


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


@router.get("/events")
async def dashboard_events(
    request: Request,
    account: CurrentAccount = Depends(get_stream_account),
    registry: SessionRegistry = Depends(get_registry),
):
    """Open a live push channel for the authenticated account."""
    logger.info("sse.opened", account_id=account.account_id)
    return StreamingResponse(
        event_stream(registry, account.account_id, request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
