"""Result cache for external-call memoization.

Uses Redis when reachable and an in-process TTL dictionary otherwise. Values
are stored as JSON so cached refinement results, summaries and severity
assessments survive a round trip through either backend.
"""

import json
import time
from typing import Any, Dict, Optional, Tuple

import redis

from storybot.core.logging import get_logger
from storybot.core.settings import ClusterSettings, resolve_settings

logger = get_logger(__name__)


class ResultCache:
    """Key/value cache with per-entry TTL."""

    def __init__(self, redis_url: Optional[str] = None, prefix: str = "local:",
                 disable_redis: bool = False):
        """Inicializa el cache; cae a memoria si Redis no responde."""
        self.prefix = prefix
        self.redis = None
        self._memory_cache: Dict[str, Tuple[float, str]] = {}

        if disable_redis or not redis_url:
            logger.info("Redis disabled, using in-memory cache")
            return

        try:
            self.redis = redis.from_url(redis_url, decode_responses=True)
            self.redis.ping()
            logger.info("Connected to Redis for result cache")
        except Exception as e:
            logger.warning(f"Redis not available, using in-memory cache: {e}")
            self.redis = None

    @classmethod
    def from_settings(cls, settings: Optional[ClusterSettings] = None) -> "ResultCache":
        settings = resolve_settings(settings)
        return cls(
            redis_url=settings.redis_url,
            prefix=settings.cache_prefix,
            disable_redis=settings.cache_disable_redis,
        )

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value or None when missing/expired."""
        full_key = self._key(key)

        if self.redis:
            try:
                raw = self.redis.get(full_key)
                if raw is not None:
                    return json.loads(raw)
            except Exception as e:
                logger.warning(f"Redis get failed for {full_key}: {e}")

        entry = self._memory_cache.get(full_key)
        if entry is None:
            return None
        expires, value = entry
        if expires <= time.monotonic():
            del self._memory_cache[full_key]
            return None
        return json.loads(value)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a JSON-serializable value for ttl_seconds."""
        full_key = self._key(key)

        if self.redis:
            try:
                self.redis.set(full_key, json.dumps(value), ex=ttl_seconds)
                return
            except Exception as e:
                logger.warning(f"Redis set failed for {full_key}: {e}")

        self._memory_cache[full_key] = (time.monotonic() + ttl_seconds, json.dumps(value))

    def clear(self) -> None:
        """Clear the in-memory cache (Redis is left untouched)."""
        self._memory_cache.clear()
