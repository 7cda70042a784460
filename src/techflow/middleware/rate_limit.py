"""Rate limiting middleware — Redis-based fixed window.

Learn: Uses a per-window counter stored in Redis (15 minutes by default).
Each IP gets a counter key like "techflow:rl:{ip}:{bucket}:{window}".
Three buckets, each with its own limit:
- auth: login/register/Google sign-in — stricter, against brute-force
- contact: POST /api/v1/contacts — strictest, against form spam
- api: everything else

Gracefully skips rate limiting if Redis is unavailable (e.g., in tests).
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from techflow.db.redis_client import get_redis

logger = structlog.get_logger()

AUTH_PATHS = ("/api/v1/auth/login", "/api/v1/auth/register", "/api/v1/auth/google")
CONTACT_PATH = "/api/v1/contacts"


def bucket_for(method: str, path: str) -> str:
    if path.startswith(AUTH_PATHS):
        return "auth"
    if method == "POST" and path.rstrip("/") == CONTACT_PATH:
        return "contact"
    return "api"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-based rate limiting per IP per window."""

    def __init__(
        self,
        app,
        window_seconds: int = 900,
        default_limit: int = 100,
        auth_limit: int = 20,
        contact_limit: int = 5,
    ):
        super().__init__(app)
        self.window_seconds = window_seconds
        self.limits = {
            "api": default_limit,
            "auth": auth_limit,
            "contact": contact_limit,
        }

    async def dispatch(self, request: Request, call_next) -> Response:
        # Try to get Redis — skip rate limiting if unavailable
        try:
            redis = get_redis()
        except RuntimeError:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        bucket = bucket_for(request.method, request.url.path)
        limit = self.limits[bucket]

        window = int(time.time() // self.window_seconds)
        key = f"techflow:rl:{client_ip}:{bucket}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, self.window_seconds * 2)
        except Exception as e:
            # Redis error — don't block the request
            logger.warning("rate_limit.redis_error", error=str(e))
            return await call_next(request)

        if count > limit:
            retry_after = self.window_seconds - int(time.time() % self.window_seconds)
            logger.info("rate_limit.exceeded", ip=client_ip, bucket=bucket)
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Try again later."},
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, limit - count))
        return response
