"""Webhook receiver — payment processor → relay.

Learn: This is the only unauthenticated write endpoint. The processor
POSTs every event it has for us; we answer 200 for anything we've
handled (including duplicates and event types we don't care about) so it
stops redelivering. Only failures before the ledger write are surfaced:

  404 — terminal isn't registered to any account
  503 — the ledger couldn't store the row (processor should retry)
  400 — body isn't a usable JSON event
  403 — signature mismatch (only when a webhook secret is configured)
"""

import json

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.auth.signature import SIGNATURE_HEADER, verify_signature
from payrelay.config import settings
from payrelay.db.engine import get_db
from payrelay.schemas.transaction import NotifyResponse
from payrelay.services.device_directory import DeviceNotFoundError
from payrelay.services.ledger import PersistenceError
from payrelay.services.relay import InvalidEventError, RelayService, get_relay

logger = structlog.get_logger()
router = APIRouter()


@router.post("/notify", response_model=NotifyResponse)
async def notify(
    request: Request,
    db: AsyncSession = Depends(get_db),
    relay: RelayService = Depends(get_relay),
):
    """Receive a payment-processor webhook and relay it."""
    body = await request.body()

    if settings.webhook_secret:
        signature = request.headers.get(SIGNATURE_HEADER, "")
        if not signature or not verify_signature(settings.webhook_secret, body, signature):
            logger.warning("notify.bad_signature")
            raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        payload = json.loads(body) if body else {}
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Body is not valid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")

    logger.info("notify.received", event_type=payload.get("event_type"))

    try:
        result = await relay.handle_event(db, payload)
    except InvalidEventError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DeviceNotFoundError as e:
        logger.warning("notify.unknown_device", device=e.device_id)
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=f"Could not record transaction: {e}")

    return NotifyResponse(status=result.status.value, request_id=result.request_id)
