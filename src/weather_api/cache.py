# src/weather_api/cache.py
"""
Lookaside cache for freshly written measurements and statistics.

Entries are written only after a successful insert and expire a fixed TTL
after the write. Reads consult the cache first and fall through to the
database on a miss without populating it. Updates and deletes do not evict,
so a cached entry may be stale for up to the TTL.

Values are the JSON-ready dicts produced by the models' `to_dict()`.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Protocol

import redis
from cachetools import TTLCache

from src.weather_api.config import Settings

logger = logging.getLogger(__name__)


class Cache(Protocol):
    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def set(self, key: str, value: Dict[str, Any]) -> None: ...

    def has(self, key: str) -> bool: ...


def measurement_key(city_id: int, timestamp: datetime) -> str:
    return f"measurement:{city_id}@{timestamp.isoformat()}"


def statistic_key(statistic_id: int) -> str:
    return f"statistic:{statistic_id}"


class MemoryCache:
    """Process-local TTL cache; not shared between workers."""

    def __init__(
        self,
        ttl_seconds: int = 300,
        max_entries: int = 1024,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: TTLCache = TTLCache(maxsize=max_entries, ttl=ttl_seconds, timer=timer)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, value: Dict[str, Any]) -> None:
        with self._lock:
            self._entries[key] = value

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._entries


class RedisCache:
    """Shared cache backed by Redis `SETEX`.

    Redis failures are logged and treated as misses so the database stays
    the source of truth.
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int = 300) -> None:
        self.redis = client
        self.ttl_seconds = ttl_seconds

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self.redis.get(key)
        except redis.RedisError as e:
            logger.error("Redis error getting cache key %s: %s", key, e)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Dict[str, Any]) -> None:
        try:
            self.redis.setex(key, self.ttl_seconds, json.dumps(value))
        except redis.RedisError as e:
            logger.error("Redis error setting cache key %s: %s", key, e)

    def has(self, key: str) -> bool:
        try:
            return bool(self.redis.exists(key))
        except redis.RedisError as e:
            logger.error("Redis error checking cache key %s: %s", key, e)
            return False


class NullCache:
    """Cache that stores nothing; every read is a miss."""

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        return None

    def set(self, key: str, value: Dict[str, Any]) -> None:
        return None

    def has(self, key: str) -> bool:
        return False


def build_cache(settings: Settings) -> Cache:
    """Create the cache backend named by `CACHE_BACKEND`."""
    backend = settings.cache_backend
    if backend == "memory":
        return MemoryCache(settings.cache_ttl_seconds, settings.cache_max_entries)
    if backend == "redis":
        if not settings.redis_url:
            raise RuntimeError("CACHE_BACKEND=redis requires REDIS_URL")
        client = redis.Redis.from_url(settings.redis_url)
        return RedisCache(client, settings.cache_ttl_seconds)
    if backend in {"none", "off", "disabled"}:
        return NullCache()
    raise RuntimeError(f"Unknown CACHE_BACKEND: {backend!r}")
