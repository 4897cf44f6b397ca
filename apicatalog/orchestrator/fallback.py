"""
Fallback Orchestrator.

Single entry point over the three catalog sources. Single-entity lookups
walk the fallback chain (custom, secondary, primary) and stop at the first
source that has the entity; aggregate operations query every source at
once and merge whatever came back. Every result goes through the shared
CacheStore.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

from apicatalog.clients.base import CatalogSource, ExistenceProbes, Supported
from apicatalog.config import CacheTTL, PaginationConfig
from apicatalog.normalizer.merge import (
    aggregate_metrics,
    compute_provider_stats,
    filter_matching,
    fold_paginated_apis,
    fold_search_results,
    merge_catalogs,
    merge_providers,
    rank_popular,
    rank_recent,
    summarize_catalog,
)
from apicatalog.normalizer.schemas import ApiSummary, preferred_version
from apicatalog.normalizer.validation import validate_pagination
from apicatalog.orchestrator.cache_manager import CacheStore
from apicatalog.orchestrator.pagination import PaginationStrategist
from apicatalog.orchestrator.rate_limiter import RateLimiter
from apicatalog.parsers.openapi_parser import OpenAPIParser
from apicatalog.utils.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_PREFIX = "catalog:"

# Aggregate keys that depend on the custom catalog
CUSTOM_DEPENDENT_KEYS = [
    "catalog:providers",
    "catalog:all_apis",
    "catalog:metrics",
    "catalog:api_summary",
    "catalog:popular",
    "catalog:provider:custom",
    "catalog:services:custom",
    "catalog:provider_stats:custom",
]

CUSTOM_DEPENDENT_PATTERNS = [
    "catalog:paginated_apis:*",
    "catalog:search:*",
    "catalog:recent:*",
    "catalog:*:custom:*",
]


# ========== Per-stage outcomes ==========


@dataclass(frozen=True)
class Found(Generic[T]):
    """The source had the entity."""

    source: str
    value: T


@dataclass(frozen=True)
class Absent:
    """The source's probe said no, or the source cannot be probed."""

    source: str


@dataclass(frozen=True)
class Failed:
    """The probe said yes but fetching raised."""

    source: str
    error: Exception


StageResult = Union[Found[T], Absent, Failed]

ProbeCall = Callable[[ExistenceProbes], Awaitable[bool]]
SourceCall = Callable[[CatalogSource], Awaitable[T]]


def _probe_provider(provider: str) -> ProbeCall:
    async def probe(probes: ExistenceProbes) -> bool:
        return await probes.has_provider(provider)

    return probe


def _probe_api(*candidates: str) -> ProbeCall:
    """True if the source knows any of the candidate identifiers."""

    async def probe(probes: ExistenceProbes) -> bool:
        for api_id in candidates:
            if await probes.has_api(api_id):
                return True
        return False

    return probe


async def _lookup_record(source: CatalogSource, api_id: str) -> dict:
    catalog = await source.fetch_raw("/list.json")
    record = catalog.get(api_id) if isinstance(catalog, dict) else None
    if not isinstance(record, dict):
        raise NotFoundError(f"API not found: {api_id}", resource=api_id, source=source.name)
    return record


class FallbackOrchestrator:
    """
    Multi-source catalog with fallback and merge.

    Lookup order for single entities:
        1. Custom (if its probe says the entity exists)
        2. Secondary (likewise)
        3. Primary (always, never probed)

    Aggregate operations (listings, search, metrics, rankings) query all
    three sources concurrently; a failing source contributes nothing.

    Example:
        >>> orchestrator = build_orchestrator()
        >>> providers = await orchestrator.get_providers()
        >>> results = await orchestrator.search_apis("stripe", limit=10)
        >>> stats = orchestrator.get_statistics()
    """

    def __init__(
        self,
        primary: CatalogSource,
        secondary: CatalogSource,
        custom: CatalogSource,
        cache: CacheStore,
        rate_limiters: Optional[dict[str, RateLimiter]] = None,
        pagination: Optional[PaginationStrategist] = None,
    ):
        """
        Args:
            primary: Catalog of record
            secondary: Second catalog, overrides primary
            custom: User-imported specs, override everything
            cache: Store every result goes through
            rate_limiters: Limiters by source name, reported in statistics
            pagination: Bulk fetcher for sources that can page
        """
        self.primary = primary
        self.secondary = secondary
        self.custom = custom
        self.cache = cache
        self.rate_limiters = rate_limiters or {}
        self.pagination = pagination or PaginationStrategist()

        # Probe-gated stages; primary is attempted after these
        self._fallback_chain = [custom, secondary]
        # Aggregate folds run in increasing precedence
        self._merge_order = [primary, secondary, custom]

        self._stats = self._empty_stats()

        logger.info(
            "FallbackOrchestrator initialized",
            extra={"sources": [s.name for s in self._merge_order]},
        )

    def _empty_stats(self) -> dict:
        stats = {
            "total_requests": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "aggregate_failures": 0,
        }
        for source in (self.custom, self.secondary, self.primary):
            stats[f"{source.name}_hits"] = 0
            stats[f"{source.name}_failures"] = 0
        return stats

    # ========== Plumbing ==========

    async def _cached(self, key: str, compute: Callable[[], Awaitable[T]], ttl: float) -> T:
        self._stats["total_requests"] += 1
        if self.cache.has(key):
            self._stats["cache_hits"] += 1
        else:
            self._stats["cache_misses"] += 1
        return await self.cache.warm_cache(key, compute, ttl)

    async def _attempt(self, source: CatalogSource, probe: ProbeCall, fetch: SourceCall) -> StageResult:
        if not isinstance(source.probes, Supported):
            return Absent(source.name)

        try:
            present = await probe(source.probes.impl)
        except Exception as e:
            return Failed(source.name, e)
        if not present:
            return Absent(source.name)

        try:
            return Found(source.name, await fetch(source))
        except Exception as e:
            return Failed(source.name, e)

    async def _resolve(self, operation: str, probe: ProbeCall, fetch: SourceCall) -> Any:
        """
        Walk the fallback chain.

        Raises:
            Exception: Whatever the primary source raised
        """
        for source in self._fallback_chain:
            result = await self._attempt(source, probe, fetch)
            if isinstance(result, Found):
                self._stats[f"{source.name}_hits"] += 1
                logger.debug(f"{operation} served by {source.name}")
                return result.value
            if isinstance(result, Failed):
                self._stats[f"{source.name}_failures"] += 1
                logger.warning(
                    f"{operation} failed on {source.name}, falling back",
                    extra={"source": source.name, "error": str(result.error)},
                )

        try:
            value = await fetch(self.primary)
        except Exception:
            self._stats[f"{self.primary.name}_failures"] += 1
            raise
        self._stats[f"{self.primary.name}_hits"] += 1
        return value

    async def _gather(self, operation: str, call: SourceCall, empty: Callable[[], T]) -> list[tuple[str, T]]:
        """
        Run ``call`` on every source at once.

        Returns:
            (source name, result) pairs in increasing precedence; a source
            that raised contributes ``empty()``.
        """
        results = await asyncio.gather(
            *(call(source) for source in self._merge_order),
            return_exceptions=True,
        )

        outcome = []
        for source, result in zip(self._merge_order, results):
            if isinstance(result, BaseException):
                self._stats["aggregate_failures"] += 1
                logger.warning(
                    f"{operation}: {source.name} unavailable, continuing without it",
                    extra={"source": source.name, "error": str(result)},
                )
                result = empty()
            outcome.append((source.name, result))
        return outcome

    @staticmethod
    async def _fetch_catalog(source: CatalogSource) -> dict:
        catalog = await source.fetch_raw("/list.json")
        return catalog if isinstance(catalog, dict) else {}

    # ========== Single-entity lookups ==========

    async def get_services(self, provider: str) -> dict:
        """Service names of one provider."""

        async def fetch(source: CatalogSource) -> dict:
            return await source.fetch_raw(f"/{provider}/services.json")

        return await self._cached(
            f"{KEY_PREFIX}services:{provider}",
            lambda: self._resolve("get_services", _probe_provider(provider), fetch),
            CacheTTL.PROVIDERS,
        )

    async def get_api(self, provider: str, api: str) -> dict:
        """Catalog record for ``/specs/{provider}/{api}.json``."""

        async def fetch(source: CatalogSource) -> dict:
            return await source.fetch_raw(f"/specs/{provider}/{api}.json")

        return await self._cached(
            f"{KEY_PREFIX}api:{provider}:{api}",
            lambda: self._resolve("get_api", _probe_api(f"{provider}:{api}", provider), fetch),
            CacheTTL.APIS,
        )

    async def get_service_api(self, provider: str, service: str, api: str) -> dict:
        """Catalog record for ``/specs/{provider}/{service}/{api}.json``."""

        async def fetch(source: CatalogSource) -> dict:
            return await source.fetch_raw(f"/specs/{provider}/{service}/{api}.json")

        probe = _probe_api(f"{provider}:{service}:{api}", f"{provider}:{service}")
        return await self._cached(
            f"{KEY_PREFIX}api:{provider}:{service}:{api}",
            lambda: self._resolve("get_service_api", probe, fetch),
            CacheTTL.APIS,
        )

    async def get_api_summary_by_id(self, api_id: str) -> dict:
        """
        Overview of one API: preferred version metadata plus version list.
        """

        async def fetch(source: CatalogSource) -> dict:
            record = await _lookup_record(source, api_id)
            version = preferred_version(record)
            info = version.get("info") or {}
            summary = ApiSummary.from_record(api_id, record, source=source.name)
            return {
                "id": api_id,
                "title": summary.title or "Untitled API",
                "description": info.get("description") or "No description available",
                "provider": summary.provider or "Unknown",
                "versions": sorted(record.get("versions") or {}),
                "preferred_version": record.get("preferred"),
                "categories": summary.categories,
                "updated": version.get("updated"),
                "added": version.get("added") or record.get("added"),
                "swagger_url": version.get("swaggerUrl"),
                "contact": info.get("contact"),
                "source": source.name,
            }

        return await self._cached(
            f"{KEY_PREFIX}summary:{api_id}",
            lambda: self._resolve("get_api_summary_by_id", _probe_api(api_id), fetch),
            CacheTTL.APIS,
        )

    async def get_openapi_spec(self, api_id: str) -> dict:
        """
        OpenAPI document of an API's preferred version.

        An embedded document is used as is; otherwise it is downloaded from
        ``swaggerUrl`` through the source that owns the record.
        """

        async def fetch(source: CatalogSource) -> dict:
            version = preferred_version(await _lookup_record(source, api_id))
            spec = version.get("spec")
            if isinstance(spec, dict):
                return spec
            url = version.get("swaggerUrl")
            if not url:
                raise NotFoundError(
                    f"No spec location for API: {api_id}", resource=api_id, source=source.name
                )
            return await source.fetch_raw(url)

        return await self._cached(
            f"{KEY_PREFIX}spec:{api_id}",
            lambda: self._resolve("get_openapi_spec", _probe_api(api_id), fetch),
            CacheTTL.SPECS,
        )

    async def get_api_endpoints(
        self,
        api_id: str,
        page: int = 1,
        limit: int = PaginationConfig.ENDPOINTS_DEFAULT_LIMIT,
        tag: Optional[str] = None,
    ) -> dict:
        """One page of an API's operations, optionally filtered by tag."""
        page, limit = validate_pagination(page, limit or PaginationConfig.ENDPOINTS_DEFAULT_LIMIT)

        async def compute() -> dict:
            spec = await self.get_openapi_spec(api_id)
            return OpenAPIParser(spec, api_id).list_endpoints(page, limit, tag)

        return await self._cached(
            f"{KEY_PREFIX}endpoints:{api_id}:{page}:{limit}:{tag or 'all'}",
            compute,
            CacheTTL.ENDPOINTS,
        )

    async def get_endpoint_details(self, api_id: str, method: str, path: str) -> dict:
        async def compute() -> dict:
            spec = await self.get_openapi_spec(api_id)
            return OpenAPIParser(spec, api_id).endpoint_details(method, path)

        return await self._cached(
            f"{KEY_PREFIX}endpoint_details:{api_id}:{method.lower()}:{path}",
            compute,
            CacheTTL.ENDPOINTS,
        )

    async def get_endpoint_schema(self, api_id: str, method: str, path: str) -> dict:
        """Request body, parameter and response schemas of one operation."""

        async def compute() -> dict:
            spec = await self.get_openapi_spec(api_id)
            return OpenAPIParser(spec, api_id).endpoint_schema(method, path)

        return await self._cached(
            f"{KEY_PREFIX}endpoint_schema:{api_id}:{method.lower()}:{path}",
            compute,
            CacheTTL.ENDPOINTS,
        )

    async def get_endpoint_examples(self, api_id: str, method: str, path: str) -> dict:
        async def compute() -> dict:
            spec = await self.get_openapi_spec(api_id)
            return OpenAPIParser(spec, api_id).endpoint_examples(method, path)

        return await self._cached(
            f"{KEY_PREFIX}endpoint_examples:{api_id}:{method.lower()}:{path}",
            compute,
            CacheTTL.ENDPOINTS,
        )

    # ========== Aggregate operations ==========

    async def get_providers(self) -> dict:
        """Every provider name known to any source, sorted."""

        async def compute() -> dict:
            results = await self._gather(
                "get_providers",
                lambda source: source.fetch_raw("/providers.json"),
                lambda: {"data": []},
            )
            merged: dict = {"data": []}
            for _, providers in results:
                merged = merge_providers(merged, providers)
            return merged

        return await self._cached(f"{KEY_PREFIX}providers", compute, CacheTTL.PROVIDERS)

    async def get_provider(self, provider: str) -> dict:
        """Identifier -> record map of one provider across all sources."""

        async def fetch(source: CatalogSource) -> dict:
            raw = await source.fetch_raw(f"/{provider}.json")
            apis = raw.get("apis") if isinstance(raw, dict) else None
            return apis if isinstance(apis, dict) else {}

        async def compute() -> dict:
            results = await self._gather("get_provider", fetch, dict)
            return merge_catalogs(*(apis for _, apis in results))

        return await self._cached(f"{KEY_PREFIX}provider:{provider}", compute, CacheTTL.APIS)

    async def list_apis(self) -> dict:
        """The full merged directory: identifier -> record."""

        async def compute() -> dict:
            results = await self._gather("list_apis", self._fetch_catalog, dict)
            return merge_catalogs(*(catalog for _, catalog in results))

        return await self._cached(f"{KEY_PREFIX}all_apis", compute, CacheTTL.APIS)

    async def _listing(self, source: CatalogSource) -> list:
        if isinstance(source.pager, Supported):
            result = await self.pagination.smart_fetch(source.pager.impl)
            return result.data

        catalog = await self._fetch_catalog(source)
        return [
            ApiSummary.from_record(api_id, record, source=source.name).model_dump(exclude_none=True)
            for api_id, record in catalog.items()
            if isinstance(record, dict)
        ]

    async def get_paginated_apis(
        self,
        page: int = 1,
        limit: int = PaginationConfig.DEFAULT_LIMIT,
    ) -> dict:
        """
        One page of the merged directory as summaries, ordered by identifier.

        Sources that can page are bulk-fetched through the
        PaginationStrategist; the others are listed in full.
        """
        page, limit = validate_pagination(page, limit)

        async def compute() -> dict:
            results = await self._gather("get_paginated_apis", self._listing, list)
            return fold_paginated_apis(results, page, limit)

        return await self._cached(
            f"{KEY_PREFIX}paginated_apis:{page}:{limit}", compute, CacheTTL.PAGINATED
        )

    async def get_api_summary(self) -> dict:
        """Directory-wide overview."""

        async def compute() -> dict:
            return summarize_catalog(await self.list_apis())

        return await self._cached(f"{KEY_PREFIX}api_summary", compute, CacheTTL.SUMMARY)

    async def get_metrics(self) -> dict:
        """
        Directory metrics without double counting shared identifiers.

        Primary and secondary are aggregated first; the result is then
        aggregated with custom against the union of the first two API maps.
        """

        async def compute() -> dict:
            metrics = await self._gather(
                "get_metrics", lambda source: source.fetch_raw("/metrics.json"), dict
            )
            catalogs = await self._gather("get_metrics", self._fetch_catalog, dict)
            (_, primary_metrics), (_, secondary_metrics), (_, custom_metrics) = metrics
            (_, primary_apis), (_, secondary_apis), (_, custom_apis) = catalogs

            combined = aggregate_metrics(
                primary_metrics, secondary_metrics, primary_apis, secondary_apis
            )
            return aggregate_metrics(
                combined, custom_metrics, {**primary_apis, **secondary_apis}, custom_apis
            )

        return await self._cached(f"{KEY_PREFIX}metrics", compute, CacheTTL.AGGREGATE_METRICS)

    async def search_apis(
        self,
        query: str,
        provider: Optional[str] = None,
        page: int = 1,
        limit: int = PaginationConfig.DEFAULT_LIMIT,
    ) -> dict:
        """
        Ranked search across all sources.

        Raises:
            ValidationError: If the query is empty
        """
        if not query or not query.strip():
            raise ValidationError("Search query must not be empty", field="query", value=query)
        normalized_query = query.strip().lower()
        page, limit = validate_pagination(page, limit, max_limit=PaginationConfig.SEARCH_MAX_LIMIT)

        async def fetch(source: CatalogSource) -> list:
            catalog = await self._fetch_catalog(source)
            return filter_matching(catalog, normalized_query, provider=provider, source=source.name)

        async def compute() -> dict:
            results = await self._gather("search_apis", fetch, list)
            return fold_search_results(results, normalized_query, page, limit)

        return await self._cached(
            f"{KEY_PREFIX}search:{normalized_query}:{provider or 'all'}:{page}:{limit}",
            compute,
            CacheTTL.SEARCH,
        )

    async def get_popular_apis(self) -> dict:
        async def compute() -> dict:
            return rank_popular(await self.list_apis(), PaginationConfig.POPULAR_LIMIT)

        return await self._cached(f"{KEY_PREFIX}popular", compute, CacheTTL.POPULAR)

    async def get_recently_updated_apis(self, limit: int = PaginationConfig.RECENT_DEFAULT_LIMIT) -> dict:
        _, limit = validate_pagination(
            1, limit or PaginationConfig.RECENT_DEFAULT_LIMIT, max_limit=PaginationConfig.SEARCH_MAX_LIMIT
        )

        async def compute() -> dict:
            return rank_recent(await self.list_apis(), limit)

        return await self._cached(f"{KEY_PREFIX}recent:{limit}", compute, CacheTTL.RECENT)

    async def get_provider_stats(self, provider: str) -> dict:
        async def compute() -> dict:
            return compute_provider_stats(await self.get_provider(provider))

        return await self._cached(f"{KEY_PREFIX}provider_stats:{provider}", compute, CacheTTL.STATS)

    # ========== Cache coherence ==========

    def invalidate_custom_catalog_caches(self) -> int:
        """
        Drop every cached result that includes custom catalog data.

        Returns:
            Number of keys removed
        """
        removed = self.cache.invalidate_keys(CUSTOM_DEPENDENT_KEYS)
        for pattern in CUSTOM_DEPENDENT_PATTERNS:
            removed += self.cache.invalidate_pattern(pattern)

        logger.info(f"Invalidated {removed} custom-dependent cache keys")
        return removed

    async def warm_critical_caches(self) -> dict[str, bool]:
        """
        Pre-populate providers, metrics and the full listing.

        Returns:
            Operation name -> whether warming succeeded
        """
        operations = {
            "providers": self.get_providers,
            "metrics": self.get_metrics,
            "all_apis": self.list_apis,
        }
        results = await asyncio.gather(
            *(operation() for operation in operations.values()),
            return_exceptions=True,
        )

        warmed = {}
        for name, result in zip(operations, results):
            warmed[name] = not isinstance(result, BaseException)
            if not warmed[name]:
                logger.warning(f"Cache warm-up failed for {name}: {result}")

        logger.info(f"Warmed {sum(warmed.values())}/{len(warmed)} critical caches")
        return warmed

    async def on_custom_catalog_changed(self) -> dict[str, bool]:
        """Reload custom specs, drop stale aggregates and re-warm them."""
        self.custom.reload()
        self.invalidate_custom_catalog_caches()
        return await self.warm_critical_caches()

    # ========== Statistics and lifecycle ==========

    def get_statistics(self) -> dict:
        """
        Orchestrator, cache and rate limiter statistics.

        Returns:
            Dictionary with request counts, cache hit rate, per-source
            hits/failures and limiter status
        """
        total_cache = self._stats["cache_hits"] + self._stats["cache_misses"]
        hit_rate = self._stats["cache_hits"] / total_cache * 100 if total_cache else 0.0

        return {
            "total_requests": self._stats["total_requests"],
            "cache": {
                "hits": self._stats["cache_hits"],
                "misses": self._stats["cache_misses"],
                "hit_rate_pct": round(hit_rate, 2),
                "store": self.cache.get_stats(),
            },
            "sources": {
                source.name: {
                    "hits": self._stats[f"{source.name}_hits"],
                    "failures": self._stats[f"{source.name}_failures"],
                }
                for source in self._merge_order
            },
            "aggregate_failures": self._stats["aggregate_failures"],
            "rate_limiters": {
                name: limiter.get_status() for name, limiter in self.rate_limiters.items()
            },
        }

    def reset_statistics(self) -> dict:
        """
        Reset counters.

        Returns:
            Statistics before the reset
        """
        previous = self.get_statistics()
        self._stats = self._empty_stats()
        logger.info("Orchestrator statistics reset")
        return previous

    async def cleanup(self) -> None:
        """Close every source and flush the cache."""
        for source in self._merge_order:
            await source.close()
        self.cache.close()
        logger.info("FallbackOrchestrator cleaned up")

    def __repr__(self) -> str:
        return (
            f"FallbackOrchestrator(requests={self._stats['total_requests']}, "
            f"cache_hits={self._stats['cache_hits']}, "
            f"sources={[s.name for s in self._merge_order]})"
        )
