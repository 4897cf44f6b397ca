"""
Disk-backed cache store.

Extends the in-memory CacheStore with a JSON snapshot under the per-user
cache directory, a background maintenance job (prune, invalidation flag
check, flush), and an invalidation flag file that other processes touch
to force a full discard.
"""

import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Optional

import orjson
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from apicatalog.config import CacheConfig
from apicatalog.normalizer.validation import SERIALIZE_OPTIONS, compute_integrity_digest
from apicatalog.orchestrator.cache_manager import CacheEntry, CacheStore
from apicatalog.utils.exceptions import CacheError

logger = logging.getLogger(__name__)


class PersistentCacheStore(CacheStore):
    """
    CacheStore that survives restarts.

    Snapshot format (``{cache_dir}/cache.json``)::

        {"<key>": {"value": ..., "expires": <epoch s, 0 = never>, "created": <epoch s>}}

    A missing, unreadable or corrupt snapshot is treated as an empty cache.

    Example:
        >>> store = PersistentCacheStore(cache_dir=Path("/tmp/catalog-cache"))
        >>> store.set("catalog:providers", {"data": ["a.com"]})
        >>> store.save()
        >>> store.destroy()
    """

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        default_ttl: Optional[float] = None,
        enabled: Optional[bool] = None,
        maintenance_interval: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize persistent cache store.

        Args:
            cache_dir: Snapshot directory (defaults to CacheConfig.CACHE_DIR)
            default_ttl: Default TTL in seconds (defaults to 24h)
            enabled: Override for CacheConfig.ENABLED
            maintenance_interval: Seconds between maintenance ticks; defaults to
                CacheConfig.MAINTENANCE_INTERVAL_SECONDS, or no timer in test mode.
                Pass 0 to disable the timer explicitly.
            clock: Wall-clock source returning epoch seconds
        """
        super().__init__(
            default_ttl=CacheConfig.PERSISTENT_DEFAULT_TTL if default_ttl is None else default_ttl,
            max_keys=0,
            enabled=enabled,
            clock=clock,
        )
        self.cache_dir = Path(cache_dir or CacheConfig.CACHE_DIR)
        self.cache_file = self.cache_dir / CacheConfig.CACHE_FILE
        self.flag_file = self.cache_dir / CacheConfig.INVALIDATION_FLAG

        if maintenance_interval is None:
            maintenance_interval = 0 if CacheConfig.TEST_MODE else CacheConfig.MAINTENANCE_INTERVAL_SECONDS
        self.maintenance_interval = maintenance_interval

        self._scheduler: Optional[BackgroundScheduler] = None
        self._destroyed = False

        if self.enabled:
            self._ensure_directory()
            if not self.check_invalidation_flag():
                self._load()
            if self.maintenance_interval:
                self._start_maintenance()

    # ========== Snapshot I/O ==========

    def _ensure_directory(self) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create cache directory {self.cache_dir}: {e}")

    def _read_snapshot(self) -> dict:
        """
        Read and decode the snapshot file.

        Raises:
            CacheError: If the file exists but cannot be read or decoded
        """
        if not self.cache_file.exists():
            return {}
        try:
            data = orjson.loads(self.cache_file.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            raise CacheError(
                f"Failed to load cache snapshot: {e}",
                operation="load",
                cache_file=str(self.cache_file),
            ) from e
        if not isinstance(data, dict):
            raise CacheError(
                "Cache snapshot is not a JSON object",
                operation="load",
                cache_file=str(self.cache_file),
            )
        return data

    def _load(self) -> int:
        """Populate memory from the snapshot; returns the number of entries loaded."""
        try:
            snapshot = self._read_snapshot()
        except CacheError as e:
            logger.warning(f"{e}; starting with an empty cache")
            return 0

        now = self._clock()
        loaded = 0
        with self._lock:
            for key, raw in snapshot.items():
                if not isinstance(raw, dict) or "value" not in raw:
                    logger.debug(f"Skipping malformed snapshot entry: {key}")
                    continue
                try:
                    expires = float(raw.get("expires") or 0)
                    created = float(raw.get("created") or now)
                    entry = CacheEntry(
                        key=key,
                        value=raw["value"],
                        created_at=created,
                        expires_at=expires,
                        digest=compute_integrity_digest(raw["value"]),
                    )
                except (TypeError, ValueError) as e:
                    logger.debug(f"Skipping unreadable snapshot entry {key}: {e}")
                    continue
                if entry.is_expired(now):
                    continue
                self._entries[key] = entry
                loaded += 1

        logger.info(f"Loaded {loaded} cache entries from {self.cache_file}")
        return loaded

    def save(self) -> bool:
        """
        Flush every unexpired entry to disk.

        The file is written to a temporary sibling and renamed into place.

        Returns:
            True on success, False if disabled or on any fault
        """
        if not self.enabled:
            return False

        try:
            with self._lock:
                now = self._clock()
                snapshot = {
                    key: entry.to_snapshot()
                    for key, entry in self._entries.items()
                    if not entry.is_expired(now)
                }
            payload = orjson.dumps(snapshot, option=SERIALIZE_OPTIONS)

            self._ensure_directory()
            tmp_file = self.cache_file.with_suffix(".json.tmp")
            tmp_file.write_bytes(payload)
            os.replace(tmp_file, self.cache_file)

            logger.debug(f"Saved {len(snapshot)} cache entries to {self.cache_file}")
            return True

        except (OSError, TypeError) as e:
            logger.error(f"Failed to save cache snapshot: {e}", extra={"cache_file": str(self.cache_file)})
            return False

    # ========== Invalidation flag ==========

    def create_invalidation_flag(self) -> bool:
        """Touch the flag file so every process discards its cache."""
        try:
            self._ensure_directory()
            self.flag_file.touch()
            logger.info(f"Created cache invalidation flag: {self.flag_file}")
            return True
        except OSError as e:
            logger.error(f"Failed to create invalidation flag: {e}")
            return False

    def check_invalidation_flag(self) -> bool:
        """
        Discard everything if the flag file exists.

        Returns:
            True if the flag was present and the cache was discarded
        """
        if not self.enabled:
            return False

        try:
            if not self.flag_file.exists():
                return False

            with self._lock:
                count = len(self._entries)
                self._entries.clear()
            self.cache_file.unlink(missing_ok=True)
            self.flag_file.unlink(missing_ok=True)

            logger.info(f"Invalidation flag found, discarded {count} cache entries")
            return True

        except OSError as e:
            logger.error(f"Failed to process invalidation flag: {e}")
            return False

    # ========== Overrides ==========

    def get(self, key: str) -> Optional[Any]:
        self.check_invalidation_flag()
        return super().get(key)

    def clear(self) -> None:
        """Drop every entry and remove the snapshot file."""
        super().clear()
        try:
            self.cache_file.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to remove cache snapshot: {e}")

    def get_config(self) -> dict:
        config = super().get_config()
        config.update(
            cache_dir=str(self.cache_dir),
            maintenance_interval=self.maintenance_interval,
            maintenance_running=self._scheduler is not None,
        )
        return config

    def get_cache_dir(self) -> Path:
        return self.cache_dir

    # ========== Maintenance ==========

    def _start_maintenance(self) -> None:
        self._scheduler = BackgroundScheduler(daemon=True)
        self._scheduler.add_job(
            func=self.run_maintenance,
            trigger=IntervalTrigger(seconds=self.maintenance_interval),
            id="cache_maintenance",
            name="Cache Maintenance",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(f"Cache maintenance scheduled every {self.maintenance_interval}s")

    def run_maintenance(self) -> None:
        """One maintenance tick: prune, check the flag, flush."""
        try:
            self.prune_expired()
            self.check_invalidation_flag()
            self.save()
        except Exception as e:
            logger.error(f"Cache maintenance failed: {e}")

    def destroy(self) -> None:
        """
        Stop maintenance and write a final snapshot.

        Safe to call more than once; a no-op when the cache is disabled.
        """
        if self._destroyed or not self.enabled:
            return
        self._destroyed = True

        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self.prune_expired()
        self.save()
        logger.info("PersistentCacheStore destroyed")

    def close(self) -> None:
        self.destroy()

    def __repr__(self) -> str:
        return (
            f"PersistentCacheStore(cache_dir={self.cache_dir}, keys={len(self._entries)}, "
            f"enabled={self.enabled})"
        )
