"""
Orchestrator Module

Caching, admission control, bulk fetching and multi-source coordination.

Components:
    - CacheStore: In-memory TTL cache with integrity digests
    - PersistentCacheStore: CacheStore with a JSON snapshot and invalidation flag
    - RateLimiter: Sliding-window FIFO admission per source
    - PaginationStrategist: Size-aware bulk fetching over paged sources
    - FallbackOrchestrator: Fallback chain and aggregate merges over all sources
    - build_orchestrator: Default wiring
"""

__all__ = [
    "CacheStore",
    "PersistentCacheStore",
    "RateLimiter",
    "PaginationStrategist",
    "FallbackOrchestrator",
    "build_orchestrator",
]

# Lazy imports to avoid circular dependencies
def __getattr__(name):
    if name == "CacheStore":
        from .cache_manager import CacheStore
        return CacheStore
    elif name == "PersistentCacheStore":
        from .persistent_cache import PersistentCacheStore
        return PersistentCacheStore
    elif name == "RateLimiter":
        from .rate_limiter import RateLimiter
        return RateLimiter
    elif name == "PaginationStrategist":
        from .pagination import PaginationStrategist
        return PaginationStrategist
    elif name == "FallbackOrchestrator":
        from .fallback import FallbackOrchestrator
        return FallbackOrchestrator
    elif name == "build_orchestrator":
        from .factory import build_orchestrator
        return build_orchestrator
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
