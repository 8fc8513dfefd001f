import json
import logging
from typing import Any, Callable

import redis
from fastapi.encoders import jsonable_encoder

from codeforegx.core.config import settings

logger = logging.getLogger(__name__)


class ResponseCache:
    """JSON read-through cache backed by Redis.

    Redis is optional infrastructure: connection or command failures are logged
    and the cache behaves as a miss, so callers always fall back to the database.
    """

    def __init__(self, url: str | None = None, ttl_seconds: int | None = None, prefix: str = "codeforegx"):
        self.url = url or settings.REDIS_URL
        self.ttl_seconds = ttl_seconds or settings.CACHE_TTL_SECONDS
        self.prefix = prefix
        self.client = redis.Redis.from_url(self.url, decode_responses=True)

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.warning("Cache ping failed: %s", e)
            return False

    def get_json(self, key: str) -> Any | None:
        try:
            raw = self.client.get(self._key(key))
        except redis.RedisError as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    def set_json(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        payload = json.dumps(jsonable_encoder(value))
        try:
            self.client.set(self._key(key), payload, ex=ttl_seconds or self.ttl_seconds)
        except redis.RedisError as e:
            logger.warning("Cache write failed for %s: %s", key, e)

    def get_or_set(self, key: str, loader: Callable[[], Any], ttl_seconds: int | None = None) -> Any:
        cached = self.get_json(key)
        if cached is not None:
            return cached
        value = jsonable_encoder(loader())
        self.set_json(key, value, ttl_seconds=ttl_seconds)
        return value

    def invalidate(self, *keys: str) -> None:
        if not keys:
            return
        try:
            self.client.delete(*[self._key(key) for key in keys])
        except redis.RedisError as e:
            logger.warning("Cache invalidation failed for %s: %s", ", ".join(keys), e)


class NullCache:
    """Cache stand-in used when CACHE_ENABLED is off; every read is a miss."""

    def ping(self) -> bool:
        return True

    def get_json(self, key: str) -> Any | None:
        return None

    def set_json(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        return None

    def get_or_set(self, key: str, loader: Callable[[], Any], ttl_seconds: int | None = None) -> Any:
        return jsonable_encoder(loader())

    def invalidate(self, *keys: str) -> None:
        return None


_cache_instance: ResponseCache | NullCache | None = None


def get_cache() -> ResponseCache | NullCache:
    """Lazily builds the process-wide cache client."""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = ResponseCache() if settings.CACHE_ENABLED else NullCache()
    return _cache_instance
