"""
Rate Limiting Middleware

Fixed-window counters in Redis, keyed per caller and endpoint.
The public invite-token routes (preview, decline) get a much tighter limit
since the token is their only credential.
"""
import re
import time
import logging
from typing import Tuple
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from core.config import settings
from core.cache import get_redis_client

logger = logging.getLogger(__name__)

PUBLIC_TOKEN_PATH = re.compile(r"^/care-circle/(invite|decline)/[^/]+$")

EXEMPT_PATHS = {"/health", "/ping", "/docs", "/openapi.json", "/redoc"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limiting middleware."""

    def __init__(self, app, default_limit: int = 60, window: int = 60):
        super().__init__(app)
        self.default_limit = default_limit
        self.window = window  # Time window in seconds

        # Per-endpoint prefix limits (requests per window)
        self.endpoint_limits = {
            "/care-circle/invite": 20,
            "/care-circle/shared": 120,
        }

    async def dispatch(self, request: Request, call_next):
        if not settings.RATE_LIMIT_ENABLED:
            return await call_next(request)

        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        caller = self._get_caller_key(request)
        bucket, limit = self._get_bucket(request.method, request.url.path)

        allowed, remaining, reset_time = self._check_rate_limit(
            key=f"rate_limit:{caller}:{bucket}",
            limit=limit,
            window=self.window
        )

        if not allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={"extra_fields": {"caller": caller, "bucket": bucket, "limit": limit}},
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "detail": "Rate limit exceeded",
                    "limit": limit,
                    "window": self.window,
                    "reset_at": reset_time
                },
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": str(remaining),
                    "X-RateLimit-Reset": str(reset_time),
                    "Retry-After": str(max(0, int(reset_time - time.time())))
                }
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_time)

        return response

    def _get_caller_key(self, request: Request) -> str:
        """Get caller identifier from request (user ID or IP address)."""
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]
            from core.security import get_user_id_from_token
            user_id = get_user_id_from_token(token)
            if user_id is not None:
                return f"user:{user_id}"

        client_ip = request.client.host if request.client else "unknown"
        return f"ip:{client_ip}"

    def _get_bucket(self, method: str, path: str) -> Tuple[str, int]:
        """
        Map a request to (bucket name, limit).

        Token routes share one bucket so a caller cannot spread guesses
        across distinct token paths.
        """
        if PUBLIC_TOKEN_PATH.match(path):
            return "care-circle-public-token", settings.RATE_LIMIT_PUBLIC_TOKEN_PER_MINUTE

        for prefix, limit in self.endpoint_limits.items():
            if path.startswith(prefix):
                return prefix, limit

        return f"{method}:{path}", self.default_limit

    def _check_rate_limit(self, key: str, limit: int, window: int) -> Tuple[bool, int, int]:
        """
        Returns:
            (allowed, remaining, reset_time)
        """
        redis_client = get_redis_client()

        if not redis_client:
            # If Redis unavailable, allow request (graceful degradation)
            return True, limit, int(time.time()) + window

        try:
            new_count = redis_client.incr(key)
            if new_count == 1:
                redis_client.expire(key, window)

            ttl = redis_client.ttl(key)
            reset_time = int(time.time()) + (ttl if ttl > 0 else window)

            if new_count > limit:
                return False, 0, reset_time

            return True, max(0, limit - new_count), reset_time

        except Exception as e:
            # On error, allow request (fail open)
            logger.error(f"Rate limit check error: {e}")
            return True, limit, int(time.time()) + window
