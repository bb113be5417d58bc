"""
Local key/value cache for entitlement state.

Backed by Redis when REDIS_URL is set and reachable, otherwise by an
in-process dict. Every operation swallows backend errors: the cache is the
last line of defense and must never fail a resolution.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from config.settings import settings
from utils.time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    value: str
    written_at: datetime = field(default_factory=utc_now)


class LocalCache:
    """
    String-valued cache with Redis primary and in-memory fallback.

    The in-memory map is also written when Redis is in use, so a Redis
    outage mid-session still leaves the last known value readable.
    """

    def __init__(self, redis_client=None, ttl_seconds: Optional[int] = None):
        self._redis = redis_client
        self._ttl = ttl_seconds
        self._entries: Dict[str, CacheEntry] = {}

    @classmethod
    def from_settings(cls) -> "LocalCache":
        """Connect to Redis if configured, falling back to in-memory storage."""
        redis_url = settings.redis_url
        if not redis_url:
            logger.info("ℹ️ REDIS_URL not set. Using in-memory entitlement cache.")
            return cls(ttl_seconds=settings.cache_ttl_seconds)

        import redis

        try:
            client = redis.from_url(redis_url, decode_responses=True)
            client.ping()
            logger.info("✅ Redis connected successfully for entitlement cache")
            return cls(redis_client=client, ttl_seconds=settings.cache_ttl_seconds)
        except Exception as e:
            logger.warning(f"⚠️ Redis connection failed: {e}. Falling back to in-memory entitlement cache.")
            return cls(ttl_seconds=settings.cache_ttl_seconds)

    def get(self, key: str) -> Optional[str]:
        if self._redis is not None:
            try:
                value = self._redis.get(key)
                if value is not None:
                    return value
            except Exception as e:
                logger.warning(f"Redis cache read failed for {key}: {e}. Using in-memory copy.")
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._ttl is not None and (utc_now() - entry.written_at).total_seconds() > self._ttl:
            self._entries.pop(key, None)
            return None
        return entry.value

    def entry(self, key: str) -> Optional[CacheEntry]:
        """Return the in-memory entry (with its write time) for key, if any."""
        return self._entries.get(key)

    def set(self, key: str, value: str) -> None:
        self._entries[key] = CacheEntry(key=key, value=value)
        if self._redis is not None:
            try:
                if self._ttl:
                    self._redis.setex(key, self._ttl, value)
                else:
                    self._redis.set(key, value)
            except Exception as e:
                logger.warning(f"Redis cache write failed for {key}: {e}. Kept in-memory copy.")

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)
        if self._redis is not None:
            try:
                self._redis.delete(key)
            except Exception as e:
                logger.warning(f"Redis cache delete failed for {key}: {e}")
