"""Health check endpoint.

Learn: Reports the database (hard dependency — the ledger lives there),
Redis (optional, rate limiting) and the MQTT link (optional, speaker
cues). Only the database decides healthy vs degraded; a broker outage
means silent speakers, not lost transactions.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay import __version__
from payrelay.db.engine import get_db
from payrelay.db.redis import get_redis

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    checks = {"server": "ok", "version": __version__}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"unavailable: {e}"

    relay = getattr(request.app.state, "relay", None)
    checks["mqtt"] = "connected" if relay and relay.publisher.connected else "disconnected"
    sessions = await relay.registry.count() if relay else 0

    status = "healthy" if checks["database"] == "ok" else "degraded"
    return {"status": status, "dashboard_sessions": sessions, **checks}
