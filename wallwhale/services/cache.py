"""
CacheManager - In-memory response cache with TTL and LRU eviction.

Features:
- Per-entry TTL, expired entries are purged lazily on access
- Explicit sweep of expired entries (cleanup), suitable for a timer
- LRU eviction by last access time once max_size is reached
- Substring invalidation of related keys

All operations are synchronous: callers share one event loop, so no
entry can change between a check and the following update.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Generic, TypeVar

from loguru import logger

from wallwhale.services.clock import Clock

T = TypeVar("T")


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for the response cache."""

    enabled: bool = True
    default_ttl: timedelta = timedelta(seconds=30)
    max_size: int = 100


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry with metadata."""

    value: T
    created_at: datetime
    ttl: timedelta
    last_accessed_at: datetime
    access_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is past its TTL."""
        return now - self.created_at > self.ttl

    def touch(self, now: datetime) -> None:
        self.access_count += 1
        self.last_accessed_at = now


class CacheManager:
    """
    Response cache with TTL and LRU eviction.

    Usage:
        cache = CacheManager(CacheConfig(default_ttl=timedelta(seconds=30)))

        job = cache.get("job:42:status")
        if job is None:
            job = await fetch_status("42")
            cache.set("job:42:status", job)
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Clock | None = None,
        debug: bool = False,
    ):
        self.config = config or CacheConfig()
        self._clock = clock or Clock()
        self._memory: dict[str, CacheEntry[Any]] = {}
        self._debug = debug
        self._stats = CacheStats()

    def get(self, key: str) -> Any | None:
        """
        Get value from cache.

        Returns the value if present and not expired, None otherwise.
        Expired entries are removed.
        """
        entry = self._memory.get(key)
        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {key[:50]}")
            return None

        now = self._clock.now()
        if entry.is_expired(now):
            del self._memory[key]
            self._stats.misses += 1
            self._stats.expirations += 1
            self._log(f"EXPIRED: {key[:50]}")
            return None

        entry.touch(now)
        self._stats.hits += 1
        self._log(f"HIT: {key[:50]}")
        return entry.value

    def has(self, key: str) -> bool:
        """Check whether a live entry exists, without counting an access."""
        entry = self._memory.get(key)
        if entry is None:
            return False

        if entry.is_expired(self._clock.now()):
            del self._memory[key]
            self._stats.expirations += 1
            return False

        return True

    def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live (uses default if not specified)
        """
        ttl = ttl if ttl is not None else self.config.default_ttl

        if len(self._memory) >= self.config.max_size and key not in self._memory:
            self._evict_lru()

        now = self._clock.now()
        # Re-inserting moves the key to the end of iteration order.
        self._memory.pop(key, None)
        self._memory[key] = CacheEntry(
            value=value,
            created_at=now,
            ttl=ttl,
            last_accessed_at=now,
        )
        self._log(f"SET: {key[:50]} (TTL: {ttl.total_seconds()}s)")

    def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        if key in self._memory:
            del self._memory[key]
            self._log(f"DELETE: {key[:50]}")
            return True
        return False

    def invalidate(self, pattern: str) -> int:
        """
        Invalidate all keys containing a substring.

        Args:
            pattern: Substring to match in keys

        Returns:
            Number of entries invalidated
        """
        keys_to_delete = [k for k in self._memory if pattern in k]
        for key in keys_to_delete:
            del self._memory[key]

        if keys_to_delete:
            self._log(f"INVALIDATE: {len(keys_to_delete)} entries matching '{pattern}'")

        return len(keys_to_delete)

    def clear(self) -> int:
        """Clear all cache entries. Returns count of removed entries."""
        count = len(self._memory)
        self._memory.clear()
        self._log(f"CLEAR: {count} entries removed")
        return count

    def cleanup(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = self._clock.now()
        expired_keys = [k for k, v in self._memory.items() if v.is_expired(now)]
        for key in expired_keys:
            del self._memory[key]

        if expired_keys:
            self._stats.expirations += len(expired_keys)
            logger.debug(f"[CacheManager] CLEANUP: {len(expired_keys)} expired entries removed")

        return len(expired_keys)

    def keys(self) -> list[str]:
        """Get all cache keys, expired or not."""
        return list(self._memory.keys())

    def __len__(self) -> int:
        return len(self._memory)

    def _evict_lru(self) -> None:
        """Evict the least recently accessed entry."""
        if not self._memory:
            return

        # min() keeps the first key in iteration order on ties
        lru_key = min(
            self._memory.keys(),
            key=lambda k: self._memory[k].last_accessed_at,
        )
        del self._memory[lru_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {lru_key[:50]}")

    def get_stats(self) -> "CacheStats":
        """Get a snapshot of cache statistics."""
        return replace(
            self._stats,
            size=len(self._memory),
            max_size=self.config.max_size,
            total_accesses=sum(e.access_count for e in self._memory.values()),
        )

    def reset_stats(self) -> None:
        self._stats = CacheStats()

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CacheManager] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    size: int = 0
    max_size: int = 0
    total_accesses: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size": self.size,
            "max_size": self.max_size,
            "total_accesses": self.total_accesses,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
