"""Redis cache service for memoizing read-heavy list queries."""

import json
import logging
from typing import Optional, Any
import redis

from scriptgov.core.config import settings

logger = logging.getLogger("script_governance")

SCRIPTS_LIST_PATTERN = "scripts:list:*"


class CacheService:
    """Redis-backed caching service. Every failure degrades to a cache miss."""

    def __init__(self):
        self._client: Optional[redis.Redis] = None

    @property
    def enabled(self) -> bool:
        return settings.CACHE_ENABLED

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                max_connections=100,
                socket_connect_timeout=2,
            )
        return self._client

    def get(self, key: str) -> Optional[str]:
        """Get a cached value by key."""
        if not self.enabled:
            return None
        try:
            return self.client.get(key)
        except redis.RedisError:
            return None

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Set a cached value with TTL."""
        if not self.enabled:
            return
        try:
            self.client.setex(key, ttl_seconds or settings.CACHE_TTL_SECONDS, value)
        except redis.RedisError:
            pass  # Cache failures are non-fatal

    def get_json(self, key: str) -> Optional[Any]:
        """Get and parse a JSON cached value."""
        raw = self.get(key)
        if raw:
            return json.loads(raw)
        return None

    def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Serialize and cache a JSON value."""
        self.set(key, json.dumps(value, default=str), ttl_seconds)

    def invalidate_pattern(self, pattern: str) -> None:
        """Delete all keys matching a pattern."""
        if not self.enabled:
            return
        try:
            keys = list(self.client.scan_iter(match=pattern))
            if keys:
                self.client.delete(*keys)
                logger.debug("Invalidated %d cache keys for %s", len(keys), pattern)
        except redis.RedisError:
            pass

    def clear_scripts_cache(self) -> None:
        """Drop every memoized script listing."""
        self.invalidate_pattern(SCRIPTS_LIST_PATTERN)

    def health_check(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


cache_service = CacheService()
