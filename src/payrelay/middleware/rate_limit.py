"""Rate limiting middleware — Redis fixed-window counters per IP.

Learn: One counter per IP, per bucket, per minute:
"payrelay:rl:{ip}:{bucket}:{minute}". Login/register get the strict
bucket to slow down password guessing. The webhook and the /events
stream are exempt: the processor retries on 429 and would just pile up,
and a dashboard holds one long connection rather than many requests.

Gracefully skips rate limiting if Redis is unavailable (e.g., in tests).
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from payrelay.db.redis import get_redis

logger = structlog.get_logger()

AUTH_PATHS = ("/api/v1/auth/login", "/api/v1/auth/register")
EXEMPT_PATHS = ("/api/v1/notify", "/api/v1/events", "/api/v1/health")


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, default_rpm: int = 300, auth_rpm: int = 10):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.auth_rpm = auth_rpm

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if path.startswith(EXEMPT_PATHS):
            return await call_next(request)

        try:
            redis = get_redis()
        except RuntimeError:
            return await call_next(request)

        is_auth = path.startswith(AUTH_PATHS)
        rpm = self.auth_rpm if is_auth else self.default_rpm
        client_ip = request.client.host if request.client else "unknown"
        window = int(time.time() // 60)
        key = f"payrelay:rl:{client_ip}:{'auth' if is_auth else 'api'}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, 120)
        except Exception as e:
            # Redis hiccup — don't block the request
            logger.warning("rate_limit.redis_error", error=str(e))
            return await call_next(request)

        if count > rpm:
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
