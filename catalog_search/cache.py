"""Result cache for engine responses: Redis when reachable, process memory otherwise.

Only primary-engine results are cached; fallback and listing results always
go to the database so a recovered engine is picked up immediately.
"""
from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

import redis

from .config import Settings
from .models import SearchRequest

logger = logging.getLogger(__name__)

KEY_PREFIX = "catalog-search:"
MAX_MEMORY_ENTRIES = 2048


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None: ...


@dataclass
class RedisCache:
    client: redis.Redis

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self.client.get(key)
        except redis.RedisError as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug("Discarding undecodable cache entry %s", key)
            return None
        return payload if isinstance(payload, dict) else None

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        try:
            self.client.setex(key, ttl, json.dumps(value, ensure_ascii=False))
        except redis.RedisError as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)


class InMemoryCache:
    """Bounded per-process cache; the oldest entry is evicted first."""

    def __init__(self, max_entries: int = MAX_MEMORY_ENTRIES, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: "OrderedDict[str, tuple[float, Dict[str, Any]]]" = OrderedDict()
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, payload = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return payload

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (self._clock() + ttl, value)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)


def cache_key(request: SearchRequest) -> str:
    """Stable key over the parameters that shape an engine result."""
    payload = json.dumps(
        [request.query, request.page, request.page_size, request.sort.value],
        ensure_ascii=False,
    )
    return KEY_PREFIX + hashlib.sha1(payload.encode("utf-8")).hexdigest()


def create_cache(settings: Settings) -> Optional[CacheBackend]:
    if not settings.cache_enabled:
        logger.info("Result cache disabled")
        return None
    client = redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        socket_connect_timeout=1,
        socket_timeout=1,
    )
    try:
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis at %s:%s unreachable (%s); caching in process memory", settings.redis_host, settings.redis_port, exc)
        return InMemoryCache()
    logger.info("Caching engine results in Redis at %s:%s", settings.redis_host, settings.redis_port)
    return RedisCache(client)
