"""
In-memory cache store for the API catalog aggregator.

Key/value cache with per-entry TTL, an integrity digest checked on every
read, glob-style invalidation, and hit/miss statistics. Every operation
except warm_cache is fail-soft: faults are logged and turned into a miss,
False, or 0.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional

import orjson

from apicatalog.config import CacheConfig
from apicatalog.normalizer.validation import compute_integrity_digest

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """
    One cached value.

    Attributes:
        key: Cache key
        value: JSON-serializable payload
        created_at: Epoch seconds at write time
        expires_at: Epoch seconds after which the entry is stale (0 = never)
        digest: sha256 of the payload at write time
    """

    key: str
    value: Any
    created_at: float
    expires_at: float
    digest: str

    def is_expired(self, now: float) -> bool:
        return self.expires_at != 0 and now >= self.expires_at

    def is_intact(self) -> bool:
        return compute_integrity_digest(self.value) == self.digest

    def to_snapshot(self) -> dict:
        return {"value": self.value, "expires": self.expires_at, "created": self.created_at}


def _pattern_to_regex(pattern: str) -> re.Pattern:
    # Only `*` is special; everything else matches literally
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


class CacheStore:
    """
    Transient TTL cache with corruption detection.

    Features:
    - Per-entry TTL (clamped to at least 1 second)
    - sha256 integrity digest verified on every read
    - Glob (`*`) and key-list invalidation
    - Hit/miss statistics and health scan
    - Injectable clock for deterministic tests

    Attributes:
        default_ttl: TTL in seconds used when a caller omits one
        max_keys: Maximum number of resident entries (None = unbounded)
        enabled: False turns every read into a miss and every write into a no-op
    """

    def __init__(
        self,
        default_ttl: Optional[float] = None,
        max_keys: Optional[int] = None,
        enabled: Optional[bool] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize cache store.

        Args:
            default_ttl: Default TTL in seconds (defaults to CacheConfig.TRANSIENT_DEFAULT_TTL)
            max_keys: Entry limit (defaults to CacheConfig.MAX_KEYS)
            enabled: Override for CacheConfig.ENABLED
            clock: Wall-clock source returning epoch seconds
        """
        self.default_ttl = CacheConfig.TRANSIENT_DEFAULT_TTL if default_ttl is None else default_ttl
        self.max_keys = CacheConfig.MAX_KEYS if max_keys is None else max_keys
        self.enabled = CacheConfig.ENABLED if enabled is None else enabled
        self._clock = clock

        # Guards _entries; the persistent store mutates it from a scheduler thread
        self._lock = threading.RLock()
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

        logger.info(
            f"{type(self).__name__} initialized: enabled={self.enabled}, "
            f"default_ttl={self.default_ttl}s, max_keys={self.max_keys}"
        )

    # ========== Internal helpers ==========

    def _resolve_ttl(self, ttl: Optional[float]) -> float:
        if not ttl:
            return self.default_ttl
        return max(float(CacheConfig.MIN_TTL), float(ttl))

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for key, evicting it if stale or corrupted."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            logger.debug(f"Cache entry expired: {key}")
            return None

        if not entry.is_intact():
            del self._entries[key]
            logger.warning(f"Cache entry failed integrity check, evicted: {key}")
            return None

        return entry

    # ========== Core operations ==========

    def get(self, key: str) -> Optional[Any]:
        """
        Retrieve a value if present, fresh and intact.

        Args:
            key: Cache key

        Returns:
            Cached value, or None when disabled, missing, expired or corrupted
        """
        if not self.enabled:
            return None

        try:
            with self._lock:
                entry = self._live_entry(key)
                if entry is None:
                    self._misses += 1
                    logger.debug(f"Cache miss: {key}")
                    return None

                self._hits += 1
                logger.debug(f"Cache hit: {key}")
                return entry.value

        except Exception as e:
            logger.error(f"Failed to read from cache: {e}", extra={"cache_key": key})
            return None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """
        Store a value with TTL.

        Args:
            key: Cache key
            value: JSON-serializable payload
            ttl: Lifetime in seconds; None or 0 uses the default,
                values below 1 second are raised to 1 second

        Returns:
            True if stored, False if disabled, full, or on any fault
        """
        if not self.enabled:
            return False

        try:
            ttl_seconds = self._resolve_ttl(ttl)
            now = self._clock()
            entry = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                expires_at=now + ttl_seconds if ttl_seconds else 0,
                digest=compute_integrity_digest(value),
            )

            with self._lock:
                if key not in self._entries and self.max_keys and len(self._entries) >= self.max_keys:
                    self._prune_locked()
                    if len(self._entries) >= self.max_keys:
                        logger.warning(f"Cache full ({self.max_keys} keys), not caching: {key}")
                        return False
                self._entries[key] = entry

            logger.debug(f"Cached: {key} (ttl={ttl_seconds}s)")
            return True

        except Exception as e:
            logger.error(f"Failed to write to cache: {e}", extra={"cache_key": key})
            return False

    def delete(self, key: str) -> int:
        """
        Remove one entry.

        Returns:
            1 if the key was resident, 0 otherwise
        """
        try:
            with self._lock:
                if self._entries.pop(key, None) is not None:
                    logger.debug(f"Deleted cache entry: {key}")
                    return 1
                return 0
        except Exception as e:
            logger.error(f"Failed to delete cache entry: {e}", extra={"cache_key": key})
            return 0

    def clear(self) -> None:
        """Drop every entry and reset statistics."""
        try:
            with self._lock:
                count = len(self._entries)
                self._entries.clear()
                self._hits = 0
                self._misses = 0
            logger.info(f"Cleared {count} cache entries")
        except Exception as e:
            logger.error(f"Failed to clear cache: {e}")

    def keys(self) -> list[str]:
        """Keys of all unexpired entries."""
        try:
            with self._lock:
                now = self._clock()
                return [k for k, e in self._entries.items() if not e.is_expired(now)]
        except Exception as e:
            logger.error(f"Failed to list cache keys: {e}")
            return []

    def has(self, key: str) -> bool:
        """True if key is present, fresh and intact (does not touch statistics)."""
        if not self.enabled:
            return False
        try:
            with self._lock:
                return self._live_entry(key) is not None
        except Exception as e:
            logger.error(f"Failed to check cache key: {e}", extra={"cache_key": key})
            return False

    def get_ttl(self, key: str) -> Optional[float]:
        """
        Remaining lifetime of an entry.

        Returns:
            Seconds until expiry, ``math.inf`` for entries that never
            expire, or None if the key is absent
        """
        try:
            with self._lock:
                entry = self._live_entry(key)
                if entry is None:
                    return None
                if entry.expires_at == 0:
                    return float("inf")
                return max(0.0, entry.expires_at - self._clock())
        except Exception as e:
            logger.error(f"Failed to read cache TTL: {e}", extra={"cache_key": key})
            return None

    # ========== Invalidation ==========

    def invalidate_pattern(self, pattern: str) -> int:
        """
        Remove every key matching a glob pattern.

        Only ``*`` is a wildcard (matching any run of characters).

        Args:
            pattern: e.g. ``"catalog:search:*"``

        Returns:
            Number of entries removed
        """
        try:
            regex = _pattern_to_regex(pattern)
            with self._lock:
                matched = [k for k in self._entries if regex.fullmatch(k)]
                for key in matched:
                    del self._entries[key]

            if matched:
                logger.info(f"Invalidated {len(matched)} cache entries matching '{pattern}'")
            return len(matched)

        except Exception as e:
            logger.error(f"Failed to invalidate pattern: {e}", extra={"pattern": pattern})
            return 0

    def invalidate_keys(self, keys: Iterable[str]) -> int:
        """Remove a list of keys; returns how many were resident."""
        removed = sum(self.delete(key) for key in keys)
        if removed:
            logger.info(f"Invalidated {removed} cache keys")
        return removed

    async def warm_cache(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Return the cached value, fetching and storing it on a miss.

        Unlike every other operation, a fetch failure is raised to the
        caller.

        Args:
            key: Cache key
            fetch: Coroutine function producing the value
            ttl: Lifetime in seconds for a freshly fetched value

        Returns:
            Cached or newly fetched value

        Raises:
            Exception: Whatever ``fetch`` raised
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        try:
            value = await fetch()
        except Exception as e:
            logger.error(f"Cache warm-up failed for {key}: {e}")
            raise

        self.set(key, value, ttl)
        return value

    # ========== Maintenance ==========

    def _prune_locked(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def prune_expired(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed
        """
        try:
            with self._lock:
                removed = self._prune_locked()
            if removed:
                logger.info(f"Pruned {removed} expired cache entries")
            return removed
        except Exception as e:
            logger.error(f"Failed to prune cache: {e}")
            return 0

    def perform_health_check(self) -> dict:
        """
        Re-validate every entry and drop the broken ones.

        Returns:
            Dictionary containing:
            - total_keys: Entries before the scan
            - corrupted_keys: Entries with bad structure or digest
            - cleaned_keys: Entries removed (corrupted plus expired)
            - memory_usage: Approximate payload bytes after the scan
        """
        corrupted = 0
        cleaned = 0

        with self._lock:
            total = len(self._entries)
            now = self._clock()

            for key, entry in list(self._entries.items()):
                try:
                    broken = not isinstance(entry, CacheEntry) or not entry.is_intact()
                except Exception:
                    broken = True

                if broken:
                    corrupted += 1
                    cleaned += 1
                    del self._entries[key]
                elif entry.is_expired(now):
                    cleaned += 1
                    del self._entries[key]

        if corrupted:
            logger.warning(f"Health check removed {corrupted} corrupted cache entries")

        return {
            "total_keys": total,
            "corrupted_keys": corrupted,
            "cleaned_keys": cleaned,
            "memory_usage": self.memory_usage(),
        }

    # ========== Introspection ==========

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def memory_usage(self) -> int:
        """Approximate size in bytes of all keys and serialized payloads."""
        try:
            with self._lock:
                return sum(
                    len(key) + len(orjson.dumps(entry.value))
                    for key, entry in self._entries.items()
                )
        except Exception as e:
            logger.error(f"Failed to measure cache size: {e}")
            return 0

    def get_stats(self) -> dict:
        """
        Get cache statistics.

        Returns:
            Dictionary with keys, hits, misses and hit_rate_pct
        """
        total = self._hits + self._misses
        return {
            "keys": self.size(),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate_pct": round(self._hits / total * 100, 2) if total else 0.0,
        }

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        logger.info(f"Cache {'enabled' if enabled else 'disabled'}")

    def is_enabled(self) -> bool:
        return self.enabled

    def get_config(self) -> dict:
        return {
            "enabled": self.enabled,
            "default_ttl": self.default_ttl,
            "max_keys": self.max_keys,
        }

    def close(self) -> None:
        """Release resources (nothing to release for the in-memory store)."""

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit with cleanup."""
        self.close()

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"{type(self).__name__}(keys={len(self._entries)}, "
            f"default_ttl={self.default_ttl}, enabled={self.enabled})"
        )
