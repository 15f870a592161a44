"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied per route (Depends(get_current_account)) rather
than at include_router level, because this API mixes three kinds of
caller: the payment processor (webhook, optionally HMAC-signed),
merchants with a bearer token, and browsers holding a token in the
/events query string.
"""

from fastapi import APIRouter

from payrelay.api.auth import router as auth_router
from payrelay.api.devices import router as devices_router
from payrelay.api.health import router as health_router
from payrelay.api.notify import router as notify_router
from payrelay.api.transactions import router as transactions_router
from payrelay.realtime.sse import router as events_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(notify_router, tags=["webhook"])
api_router.include_router(devices_router, tags=["devices"])
api_router.include_router(transactions_router, tags=["transactions"])
api_router.include_router(events_router, tags=["events"])
