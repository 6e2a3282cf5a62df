"""In-process cache for per-strategy recommendation lists"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from config import (
    CACHE_TTL,
    CACHE_PERSONALIZED_TTL,
    CACHE_MAX_SIZE,
    CACHE_BURST_WINDOW,
)

logger = logging.getLogger(__name__)

_MISS = object()


@dataclass(frozen=True)
class CacheKey:
    """Structured fingerprint: strategy tag, owning user (if any), parameters."""

    tag: str
    user_id: Optional[str] = None
    params: Tuple[Any, ...] = ()

    def __str__(self) -> str:
        parts = [self.tag]
        if self.user_id is not None:
            parts.append(self.user_id)
        parts.extend(str(p) for p in self.params)
        return "_".join(parts)


@dataclass
class CacheEntry:
    payload: Any
    created_at: float
    personalized: bool


class ActivityCache:
    """TTL + oldest-first eviction cache that reacts to live user activity.

    Personalized entries expire after `personalized_ttl` seconds, aggregate
    ones after `ttl`. A user acting twice inside `burst_window` seconds loses
    all their cached entries.
    """

    MISS = _MISS

    def __init__(
        self,
        max_size: int = CACHE_MAX_SIZE,
        ttl: float = CACHE_TTL,
        personalized_ttl: float = CACHE_PERSONALIZED_TTL,
        burst_window: float = CACHE_BURST_WINDOW,
        clock: Callable[[], float] = time.time,
    ):
        self.max_size = max_size
        self.ttl = ttl
        self.personalized_ttl = personalized_ttl
        self.burst_window = burst_window
        self.clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._user_activity: Dict[str, float] = {}
        self._lock = threading.RLock()
        self._stats = {"hits": 0, "misses": 0, "evictions": 0, "invalidations": 0}

    def ttl_for(self, personalized: bool) -> float:
        return self.personalized_ttl if personalized else self.ttl

    def get(self, key: CacheKey) -> Any:
        """Return the cached payload or `ActivityCache.MISS`."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return _MISS
            if self.clock() - entry.created_at > self.ttl_for(entry.personalized):
                del self._entries[key]
                self._stats["evictions"] += 1
                return _MISS
            self._stats["hits"] += 1
            return entry.payload

    def set(self, key: CacheKey, payload: Any, personalized: bool = False):
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_oldest()
            self._entries[key] = CacheEntry(payload, self.clock(), personalized)

    def get_or_compute(self, key: CacheKey, compute: Callable[[], Any], personalized: bool = False) -> Any:
        cached = self.get(key)
        if cached is not _MISS:
            return cached
        # compute outside the lock, store only a complete result
        payload = compute()
        self.set(key, payload, personalized)
        return payload

    def _evict_oldest(self):
        if not self._entries:
            return
        oldest = min(self._entries.items(), key=lambda kv: kv[1].created_at)[0]
        del self._entries[oldest]
        self._stats["evictions"] += 1

    def _invalidate(self, predicate: Callable[[CacheKey], bool]) -> int:
        with self._lock:
            doomed = [key for key in self._entries if predicate(key)]
            for key in doomed:
                del self._entries[key]
            self._stats["invalidations"] += len(doomed)
            return len(doomed)

    def invalidate_where(self, predicate: Callable[[CacheKey], bool]) -> int:
        return self._invalidate(predicate)

    def invalidate_user(self, user_id: str) -> int:
        count = self._invalidate(lambda key: key.user_id == user_id)
        if count:
            logger.debug(f"Invalidated {count} cache entries for user {user_id}")
        return count

    def invalidate_tag(self, *tags: str) -> int:
        """Drop every entry whose strategy tag is one of `tags`."""
        wanted = set(tags)
        return self._invalidate(lambda key: key.tag in wanted)

    def track_activity(self, user_id: str):
        with self._lock:
            now = self.clock()
            last = self._user_activity.get(user_id)
            self._user_activity[user_id] = now
            if last is not None and now - last < self.burst_window:
                self.invalidate_user(user_id)

    def purge_expired(self, grace_factor: float) -> int:
        """Remove entries older than `grace_factor` times their ttl."""
        with self._lock:
            now = self.clock()
            doomed = [
                key
                for key, entry in self._entries.items()
                if now - entry.created_at > self.ttl_for(entry.personalized) * grace_factor
            ]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def forget_idle_users(self, horizon: float) -> int:
        with self._lock:
            now = self.clock()
            idle = [user for user, last in self._user_activity.items() if now - last > horizon]
            for user in idle:
                del self._user_activity[user]
            return len(idle)

    def reset(self) -> int:
        """Drop every entry, activity timestamp and counter."""
        with self._lock:
            size = len(self._entries)
            self._entries.clear()
            self._user_activity.clear()
            for name in self._stats:
                self._stats[name] = 0
            return size

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._stats["hits"] + self._stats["misses"]
            return {
                **self._stats,
                "size": len(self._entries),
                "hitRate": self._stats["hits"] / lookups if lookups else 0.0,
                "activeUsers": len(self._user_activity),
            }
