"""
HTTP catalog source.

Asynchronous aiohttp client for the primary and secondary catalogs, with
per-source rate limiting, retry with exponential backoff, and response
caching in the shared CacheStore.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from ..config import CacheTTL, SourceConfig
from ..normalizer.schemas import ApiSummary
from ..normalizer.validation import validate_providers
from ..orchestrator.cache_manager import CacheStore
from ..orchestrator.pagination import PageChunk
from ..orchestrator.rate_limiter import RateLimiter
from ..utils.exceptions import (
    APIError,
    CatalogError,
    RateLimitError,
    ServerError,
    SourceTimeoutError,
    error_from_status,
    wrap_exception,
)
from .base import CatalogSource, ExistenceProbes, Supported, Unsupported

logger = logging.getLogger(__name__)


@dataclass
class HttpSourceConfig:
    """Configuration for an HTTP catalog source.

    Attributes:
        base_url: Catalog root, without trailing slash
        timeout: Request timeout in seconds
        max_retries: Maximum attempts per request
        base_delay: Initial retry delay in seconds
        user_agent: User-Agent header
    """

    base_url: str
    timeout: int = 30
    max_retries: int = 3
    base_delay: float = 1.0
    user_agent: str = "apicatalog/1.0"

    @classmethod
    def from_env(cls, base_url: str) -> "HttpSourceConfig":
        """Create configuration from environment variables."""
        return cls(
            base_url=base_url.rstrip("/"),
            timeout=SourceConfig.REQUEST_TIMEOUT,
            max_retries=SourceConfig.MAX_RETRIES,
            base_delay=SourceConfig.RETRY_BASE_DELAY,
            user_agent=SourceConfig.USER_AGENT,
        )


def ttl_for_path(path: str) -> int:
    """Cache lifetime for a raw response, by catalog path."""
    if path.startswith(("http://", "https://")):
        return CacheTTL.SPECS
    if path == "/providers.json" or path.endswith("/services.json"):
        return CacheTTL.PROVIDERS
    if path == "/list.json":
        return CacheTTL.APIS
    if path == "/metrics.json":
        return CacheTTL.METRICS
    if path.startswith("/specs/"):
        return CacheTTL.SPECS
    return CacheTTL.APIS


class HttpCatalogSource(CatalogSource):
    """Catalog reached over HTTP.

    Features:
    - Async HTTP with aiohttp
    - Every request admitted through the source's RateLimiter
    - Exponential backoff retry on 429, 5xx and timeouts
    - Raw responses cached under ``{name}:{path}``
    - Optional existence probes backed by the cached provider and API lists

    Example:
        ```python
        limiter = RateLimiter.from_preset("secondary")
        async with HttpCatalogSource.secondary(limiter, cache) as source:
            providers = await source.fetch_raw("/providers.json")
        ```
    """

    def __init__(
        self,
        name: str,
        config: HttpSourceConfig,
        rate_limiter: RateLimiter,
        cache: Optional[CacheStore] = None,
        enable_probes: bool = True,
    ):
        """Initialize HTTP catalog source.

        Args:
            name: Source name (primary/secondary)
            config: Client configuration
            rate_limiter: Limiter owned by this source
            cache: Shared cache for raw responses
            enable_probes: False for the catalog of record, which is never probed
        """
        probes = (
            Supported(ExistenceProbes(has_provider=self.has_provider, has_api=self.has_api))
            if enable_probes
            else Unsupported(f"{name} is always queried")
        )
        super().__init__(probes=probes, pager=Supported(self.fetch_page))

        self.name = name
        self.config = config
        self.rate_limiter = rate_limiter
        self.cache = cache
        self._session: Optional[aiohttp.ClientSession] = None
        self._stats = {
            "requests_made": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "retries": 0,
            "errors": 0,
        }

        logger.info(
            f"Initialized {name} catalog source",
            extra={
                "base_url": config.base_url,
                "timeout": config.timeout,
                "max_retries": config.max_retries,
            },
        )

    @classmethod
    def primary(cls, rate_limiter: RateLimiter, cache: Optional[CacheStore] = None) -> "HttpCatalogSource":
        """The catalog of record: no probes, always attempted last."""
        config = HttpSourceConfig.from_env(SourceConfig.PRIMARY_BASE_URL)
        return cls("primary", config, rate_limiter, cache, enable_probes=False)

    @classmethod
    def secondary(cls, rate_limiter: RateLimiter, cache: Optional[CacheStore] = None) -> "HttpCatalogSource":
        config = HttpSourceConfig.from_env(SourceConfig.SECONDARY_BASE_URL)
        return cls("secondary", config, rate_limiter, cache, enable_probes=True)

    async def _ensure_session(self) -> None:
        """Ensure aiohttp session is initialized."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": self.config.user_agent, "Accept": "application/json"},
            )
            logger.debug(f"Created new aiohttp session for {self.name}")

    async def close(self) -> None:
        """Close aiohttp session and cleanup resources."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug(f"Closed aiohttp session for {self.name}")

    def _build_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.config.base_url}/{path.lstrip('/')}"

    def _get_cache_key(self, path: str) -> str:
        return f"{self.name}:{path}"

    async def _make_request(self, url: str) -> Any:
        """Make one GET request and decode the JSON body.

        Raises:
            NotFoundError: 404
            RateLimitError: 429
            ServerError: 5xx
            SourceTimeoutError: Deadline exceeded
            NetworkError: Connection failed
            APIError: Other failures
        """
        await self._ensure_session()
        self._stats["requests_made"] += 1

        try:
            async with self._session.get(url) as response:
                if response.status >= 400:
                    error_body = await response.text()
                    retry_after = response.headers.get("Retry-After")
                    logger.warning(
                        "Catalog request failed",
                        extra={"source": self.name, "status": response.status, "url": url},
                    )
                    raise error_from_status(
                        response.status,
                        endpoint=url,
                        response_body=error_body,
                        source=self.name,
                        retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                    )

                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise APIError(
                        f"Invalid JSON from {self.name}: {e}",
                        endpoint=url,
                        status_code=response.status,
                        source=self.name,
                    ) from e

                logger.debug(
                    "Request successful",
                    extra={"source": self.name, "url": url, "status": response.status},
                )
                return data

        except CatalogError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                "HTTP client error",
                extra={"source": self.name, "url": url, "error": str(e)},
            )
            raise wrap_exception(e, endpoint=url, source=self.name) from e

    async def _fetch_with_retry(self, url: str) -> Any:
        """Fetch URL with exponential backoff retry logic.

        Retries on RateLimitError, ServerError and SourceTimeoutError;
        everything else is raised immediately.
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.config.max_retries):
            try:
                return await self._make_request(url)

            except (RateLimitError, ServerError, SourceTimeoutError) as e:
                last_exception = e
                self._stats["retries"] += 1

                if attempt < self.config.max_retries - 1:
                    delay = self.config.base_delay * (2 ** attempt)
                    if isinstance(e, RateLimitError) and e.retry_after:
                        delay = max(delay, float(e.retry_after))
                    total_delay = delay + random.uniform(0, delay * 0.1)

                    logger.warning(
                        "Retrying request",
                        extra={
                            "source": self.name,
                            "attempt": attempt + 1,
                            "max_retries": self.config.max_retries,
                            "delay": round(total_delay, 2),
                            "error": str(e),
                        },
                    )
                    await asyncio.sleep(total_delay)
                else:
                    logger.error(
                        "Max retries exceeded",
                        extra={"source": self.name, "url": url, "attempts": self.config.max_retries},
                    )

        if last_exception:
            raise last_exception

        raise APIError("Request failed after retries", endpoint=url, source=self.name)

    async def fetch_raw(self, path: str) -> Any:
        """Fetch a catalog path (or absolute URL), using the cache first.

        Args:
            path: Catalog path such as ``/list.json``, or an absolute URL

        Returns:
            Decoded JSON
        """
        cache_key = self._get_cache_key(path)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                self._stats["cache_hits"] += 1
                return cached
        self._stats["cache_misses"] += 1

        url = self._build_url(path)
        try:
            data = await self.rate_limiter.execute(lambda: self._fetch_with_retry(url))
        except Exception:
            self._stats["errors"] += 1
            raise

        if self.cache is not None:
            self.cache.set(cache_key, data, ttl_for_path(path))
        return data

    # ========== Probes and paging ==========

    async def has_provider(self, provider: str) -> bool:
        providers, _ = validate_providers(await self.fetch_raw("/providers.json"))
        return provider in providers

    async def has_api(self, api_id: str) -> bool:
        catalog = await self.fetch_raw("/list.json")
        return isinstance(catalog, dict) and api_id in catalog

    async def fetch_page(self, page: int, limit: int) -> PageChunk:
        """One page of the full listing, ordered by identifier."""
        catalog = await self.fetch_raw("/list.json")
        if not isinstance(catalog, dict):
            raise APIError(f"Malformed listing from {self.name}", endpoint="/list.json", source=self.name)

        ids = sorted(catalog)
        start = (max(1, page) - 1) * limit
        items = [
            ApiSummary.from_record(api_id, catalog[api_id], source=self.name).model_dump(exclude_none=True)
            for api_id in ids[start:start + limit]
            if isinstance(catalog[api_id], dict)
        ]
        return PageChunk(items=items, total=len(ids), has_more=start + limit < len(ids))

    def get_statistics(self) -> dict:
        return {
            **self._stats,
            "rate_limiter": self.rate_limiter.get_status(),
        }
