"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The lifespan owns the long-lived relay state:

- SessionRegistry: every open dashboard stream
- TopicPublisher: the single MQTT client
- RelayService: built from the two above, stored on app.state

Nothing is a module-level global, so tests can build an app with a fake
publisher and a fresh registry.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from payrelay import __version__
from payrelay.api import api_router
from payrelay.config import settings
from payrelay.realtime.registry import SessionRegistry
from payrelay.services.publisher import TopicPublisher
from payrelay.services.relay import RelayService

logger = structlog.get_logger()


def install_relay(app: FastAPI, publisher: TopicPublisher) -> RelayService:
    registry = SessionRegistry()
    relay = RelayService(registry=registry, publisher=publisher)
    app.state.registry = registry
    app.state.relay = relay
    return relay


def build_lifespan(publisher: Optional[TopicPublisher] = None):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle.

        Learn: Anything before `yield` runs at startup, after `yield` runs
        at shutdown. Shutdown order matters: close dashboard streams, let
        in-flight fan-outs finish, then drop the MQTT link and the pools.
        """
        logger.info(
            "payrelay.starting",
            version=__version__,
            environment=settings.environment,
            port=settings.port,
        )

        from payrelay.db.redis import close_redis, init_redis
        try:
            await init_redis()
            logger.info("payrelay.redis_connected", url=settings.redis_url)
        except Exception as e:
            logger.warning("payrelay.redis_unavailable", error=str(e))

        mqtt = publisher or TopicPublisher()
        mqtt.connect()
        relay = install_relay(app, mqtt)

        yield

        logger.info("payrelay.shutdown")
        await relay.registry.close_all()
        await relay.drain()
        mqtt.disconnect()
        await close_redis()

        from payrelay.db.engine import engine
        await engine.dispose()

    return lifespan


def create_app(publisher: Optional[TopicPublisher] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="payrelay",
        description="Payment-terminal event relay — ledger, voice speakers, live dashboards",
        version=__version__,
        lifespan=build_lifespan(publisher),
    )

    # ── Middleware stack ──────────────────────────────────────
    # Starlette runs middleware in reverse registration order:
    # RequestId → Security → RateLimit → CORS → handler

    from payrelay.middleware.rate_limit import RateLimitMiddleware
    from payrelay.middleware.request_id import RequestIdMiddleware
    from payrelay.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_router)
    return app


# Default app instance (used by uvicorn: payrelay.main:app)
app = create_app()
