"""Result caches for fused recommendation lists."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

import redis
from pydantic import TypeAdapter

from mediarec.recommendations.config import RESULT_CACHE_CAPACITY, RESULT_CACHE_TTL
from mediarec.recommendations.models import HybridRecommendation, RecommendationContext

logger = logging.getLogger(__name__)

_RECOMMENDATIONS = TypeAdapter(list[HybridRecommendation])


def make_cache_key(
    user_id: str,
    limit: int,
    context: RecommendationContext | None,
    diversity: bool,
) -> str:
    """Deterministic key for a recommendation request."""
    payload = json.dumps(
        {
            "user_id": user_id,
            "limit": limit,
            "context": context.model_dump(mode="json", exclude_none=True)
            if context is not None
            else None,
            "diversity": diversity,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return "hybrid:" + hashlib.sha256(payload.encode("utf-8")).hexdigest()


class TTLQueryCache:
    """In-process key/value cache with per-entry expiry."""

    def __init__(
        self,
        ttl_seconds: float = RESULT_CACHE_TTL,
        max_entries: int = RESULT_CACHE_CAPACITY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                self._evictions += 1
                self._misses += 1
                return None
            self._hits += 1
            return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = self._clock() + (self._ttl if ttl is None else ttl)
        with self._lock:
            # Last write wins for concurrent writers of the same key.
            self._entries.pop(key, None)
            if len(self._entries) >= self._max_entries:
                self._prune_expired()
            while len(self._entries) >= self._max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1
            self._entries[key] = (expires_at, value)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def get_statistics(self) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "backend": "in-memory",
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / lookups if lookups else 0.0,
                "size": len(self._entries),
                "capacity": self._max_entries,
                "evictions": self._evictions,
                "ttl_seconds": self._ttl,
            }

    def _prune_expired(self) -> None:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        self._evictions += len(expired)


class RedisRecommendationCache:
    """Redis-backed cache for ``list[HybridRecommendation]`` values.

    Redis errors are not swallowed here; the engine treats them as a cache
    outage and serves the request uncached.
    """

    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: float = RESULT_CACHE_TTL,
        prefix: str = "mediarec:recs:",
    ) -> None:
        self._client = client
        self._ttl = ttl_seconds
        self._prefix = prefix

    @classmethod
    def from_url(
        cls, url: str, ttl_seconds: float = RESULT_CACHE_TTL
    ) -> RedisRecommendationCache:
        client = redis.Redis.from_url(url, socket_connect_timeout=2)
        return cls(client, ttl_seconds=ttl_seconds)

    def get(self, key: str) -> list[HybridRecommendation] | None:
        data = self._client.get(self._prefix + key)
        if data is None:
            return None
        return _RECOMMENDATIONS.validate_json(data)

    def set(
        self, key: str, value: list[HybridRecommendation], ttl: float | None = None
    ) -> None:
        seconds = max(1, int(self._ttl if ttl is None else ttl))
        self._client.setex(self._prefix + key, seconds, _RECOMMENDATIONS.dump_json(value))

    def clear(self) -> int:
        keys = list(self._client.scan_iter(match=f"{self._prefix}*"))
        if not keys:
            return 0
        return int(self._client.delete(*keys))

    def get_statistics(self) -> dict[str, Any]:
        keys = sum(1 for _ in self._client.scan_iter(match=f"{self._prefix}*"))
        return {"backend": "redis", "size": keys, "ttl_seconds": self._ttl}
