"""
Fixed-window rate limiting for the API.

Two policies:
  api  - general endpoints (default 100 requests per 15 minutes per client)
  auth - login and signup (default 5 requests per hour per client)

Counters live in `memory://` by default; point RATE_LIMIT_STORAGE_URI at
`redis://...` to share them between workers.
"""

import logging
from datetime import datetime, timezone

from fastapi import Request
from fastapi.responses import JSONResponse
from limits import RateLimitItem, parse
from limits.storage import Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter

from codeforegx.core.config import settings

logger = logging.getLogger(__name__)

API_LIMIT_MESSAGE = "Too many requests, please try again later"
AUTH_LIMIT_MESSAGE = "Too many login attempts, please try again later"


class RateLimitExceeded(Exception):
    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after


def get_rate_limit_key(request: Request) -> str:
    """Client key for the current request: first X-Forwarded-For hop, else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RateLimitPolicy:
    """A named fixed-window limit usable as a FastAPI dependency."""

    def __init__(self, name: str, limit: str, message: str, storage: Storage | None = None):
        self.name = name
        self.item: RateLimitItem = parse(limit)
        self.message = message
        self._storage = storage
        self._limiter: FixedWindowRateLimiter | None = None

    @property
    def limiter(self) -> FixedWindowRateLimiter:
        if self._limiter is None:
            storage = self._storage or storage_from_string(settings.RATE_LIMIT_STORAGE_URI)
            self._limiter = FixedWindowRateLimiter(storage)
        return self._limiter

    def hit(self, key: str) -> bool:
        return self.limiter.hit(self.item, self.name, key)

    def reset(self) -> None:
        self._limiter = None

    async def __call__(self, request: Request) -> None:
        if not settings.RATE_LIMIT_ENABLED:
            return
        key = get_rate_limit_key(request)
        if self.hit(key):
            return

        logger.warning(
            "Rate limit exceeded: policy=%s ip=%s path=%s timestamp=%s",
            self.name,
            key,
            request.url.path,
            datetime.now(timezone.utc).isoformat(),
        )
        reset_at, _ = self.limiter.get_window_stats(self.item, self.name, key)
        retry_after = max(0, int(reset_at - datetime.now(timezone.utc).timestamp()))
        raise RateLimitExceeded(self.message, retry_after=retry_after)


api_limiter = RateLimitPolicy("api", settings.RATE_LIMIT_API, API_LIMIT_MESSAGE)
auth_limiter = RateLimitPolicy("auth", settings.RATE_LIMIT_AUTH, AUTH_LIMIT_MESSAGE)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after is not None else None
    return JSONResponse(status_code=429, content={"error": exc.message}, headers=headers)
