"""Best-effort key/value cache: Redis when reachable, in-process TTLCache otherwise.

Cache failures never fail the caller; a miss simply falls through to the
database.
"""

import json
from typing import Any, Optional

import redis
from cachetools import TTLCache

from marketplace.core_settings import get_settings
from marketplace.core.logging_config import get_logger

logger = get_logger(__name__)

class SettingsCache:
    """Cache port injected into the settings provider."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, ttl: int = 300, maxsize: int = 1024):
        self.redis_client = redis_client
        self.ttl = ttl
        self.local_cache = TTLCache(maxsize=maxsize, ttl=ttl)

    def get(self, key: str) -> Optional[Any]:
        """Retrieve cached value if present."""
        if self.redis_client:
            try:
                val = self.redis_client.get(key)
                if val is not None:
                    return json.loads(val)
            except Exception as e:
                logger.warning(f"Cache read failed for {key}: {e}")
        return self.local_cache.get(key)

    def set(self, key: str, value: Any, ttl: Optional[int] = None):
        """Set a cache value with TTL."""
        if self.redis_client:
            try:
                self.redis_client.setex(key, ttl or self.ttl, json.dumps(value))
                return
            except Exception as e:
                logger.warning(f"Cache write failed for {key}: {e}")
        self.local_cache[key] = value

    def delete(self, key: str):
        self.local_cache.pop(key, None)
        if self.redis_client:
            try:
                self.redis_client.delete(key)
            except Exception as e:
                logger.warning(f"Cache delete failed for {key}: {e}")

    def delete_prefix(self, prefix: str):
        """Delete cache entries whose keys start with the provided prefix."""
        for key in tuple(self.local_cache.keys()):  # tuple snapshot
            if key.startswith(prefix):
                self.local_cache.pop(key, None)
        if self.redis_client:
            try:
                for key in self.redis_client.scan_iter(match=f"{prefix}*"):
                    self.redis_client.delete(key)
            except Exception as e:
                logger.warning(f"Cache purge failed for {prefix}: {e}")

    def ping(self) -> bool:
        if not self.redis_client:
            return False
        self.redis_client.ping()
        return True

def build_settings_cache() -> SettingsCache:
    settings = get_settings()
    redis_client: Optional[redis.Redis] = None
    if settings.REDIS_URL:
        try:
            redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True, socket_connect_timeout=1)
            redis_client.ping()
        except Exception as e:
            logger.warning(f"Redis unavailable, using in-process cache: {e}")
            redis_client = None
    return SettingsCache(redis_client=redis_client, ttl=settings.SETTINGS_CACHE_TTL)

_settings_cache: Optional[SettingsCache] = None

def get_settings_cache() -> SettingsCache:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = build_settings_cache()
    return _settings_cache
