"""
Wiring for a ready-to-use FallbackOrchestrator.

Each source gets its own RateLimiter from a named preset; all sources
share one persistent CacheStore.
"""

import logging
from pathlib import Path
from typing import Optional

from apicatalog.clients.custom_source import CustomCatalogSource
from apicatalog.clients.http_source import HttpCatalogSource
from apicatalog.config import PaginationConfig
from apicatalog.orchestrator.cache_manager import CacheStore
from apicatalog.orchestrator.fallback import FallbackOrchestrator
from apicatalog.orchestrator.pagination import PaginationStrategist
from apicatalog.orchestrator.persistent_cache import PersistentCacheStore
from apicatalog.orchestrator.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def build_rate_limiters() -> dict[str, RateLimiter]:
    """One limiter per source, from the RateLimitConfig presets."""
    return {
        name: RateLimiter.from_preset(name)
        for name in ("primary", "secondary", "custom")
    }


def build_orchestrator(
    cache: Optional[CacheStore] = None,
    cache_dir: Optional[Path] = None,
    custom_specs_dir: Optional[Path] = None,
) -> FallbackOrchestrator:
    """
    Build the orchestrator with default sources.

    Args:
        cache: Store to use instead of a PersistentCacheStore
        cache_dir: Snapshot directory for the default store
        custom_specs_dir: Root of user-imported specs

    Returns:
        FallbackOrchestrator; call ``cleanup()`` when done
    """
    if cache is None:
        cache = PersistentCacheStore(cache_dir=cache_dir)

    limiters = build_rate_limiters()
    orchestrator = FallbackOrchestrator(
        primary=HttpCatalogSource.primary(limiters["primary"], cache),
        secondary=HttpCatalogSource.secondary(limiters["secondary"], cache),
        custom=CustomCatalogSource(custom_specs_dir, rate_limiter=limiters["custom"]),
        cache=cache,
        rate_limiters=limiters,
        pagination=PaginationStrategist(
            chunk_size=PaginationConfig.CHUNKED_FETCH_SIZE,
            max_total=PaginationConfig.LARGE_FETCH_LIMIT,
            concurrency=PaginationConfig.PARALLEL_CONCURRENCY,
        ),
    )

    logger.debug(f"Built {orchestrator!r}")
    return orchestrator
