"""Rate limiting middleware — Redis-based fixed window per minute.

Learn: Each client IP gets a counter key like
"firemarket:rl:{ip}:{bucket}:{minute}". Writes that create content
(POST ads, bids, reviews) share a stricter "write" bucket so one client
can't flood an ad with bids; everything else counts against "api".

Gracefully skips rate limiting if Redis is unavailable (not running,
or an app that never ran its lifespan).
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

_WRITE_SUFFIXES = ("/marketplace/ads", "/bids", "/reviews")


def is_write(request: Request) -> bool:
    return request.method == "POST" and request.url.path.rstrip("/").endswith(
        _WRITE_SUFFIXES
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-based rate limiting per IP per minute."""

    def __init__(self, app, default_rpm: int = 100, write_rpm: int = 20):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.write_rpm = write_rpm

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            from firemarket.realtime.pubsub import get_redis

            redis = get_redis()
        except RuntimeError:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        write = is_write(request)
        rpm = self.write_rpm if write else self.default_rpm
        window = int(time.time() // 60)
        bucket = "write" if write else "api"
        key = f"firemarket:rl:{client_ip}:{bucket}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, 120)
        except Exception:
            # Redis error: let the request through
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
