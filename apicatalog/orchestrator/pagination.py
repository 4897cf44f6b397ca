"""
Adaptive pagination for bulk catalog fetches.

PaginationStrategist probes a paged source for its size and then picks
one of three strategies: a single call for small sets, sequential chunks
for moderate sets, or bounded-concurrency parallel batches for large
sets. Failures mid-fetch yield partial results instead of errors.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from apicatalog.config import PaginationConfig

logger = logging.getLogger(__name__)


@dataclass
class PageChunk:
    """
    One page returned by a paged source.

    Attributes:
        items: Records on this page
        total: Total records available, if the source knows it
        has_more: Whether later pages exist, if the source knows it
    """

    items: list = field(default_factory=list)
    total: Optional[int] = None
    has_more: Optional[bool] = None


@dataclass
class PaginatedResult:
    """Outcome of a bulk fetch."""

    data: list = field(default_factory=list)
    total_fetched: int = 0
    total_available: int = 0
    chunks_processed: int = 0

    def to_dict(self) -> dict:
        return {
            "data": self.data,
            "totalFetched": self.total_fetched,
            "totalAvailable": self.total_available,
            "chunksProcessed": self.chunks_processed,
        }


PageFetcher = Callable[[int, int], Awaitable[PageChunk]]


class PaginationStrategist:
    """
    Size-aware bulk fetcher.

    Strategy by estimated total:
        - total <= small_threshold: one call with limit = total
        - total <= max_total: sequential chunks of ``chunk_size``
        - otherwise: first page, then parallel batches of ``parallel_chunk_size``
          pages, ``concurrency`` at a time

    Example:
        >>> strategist = PaginationStrategist()
        >>> result = await strategist.smart_fetch(source.fetch_page)
        >>> print(f"{result.total_fetched}/{result.total_available}")
    """

    def __init__(
        self,
        chunk_size: int = PaginationConfig.CHUNKED_FETCH_SIZE,
        max_total: int = PaginationConfig.LARGE_FETCH_LIMIT,
        concurrency: int = PaginationConfig.PARALLEL_CONCURRENCY,
        small_threshold: int = PaginationConfig.SMALL_DATASET_THRESHOLD,
        parallel_chunk_size: int = PaginationConfig.PARALLEL_CHUNK_SIZE,
        sequential_delay: float = PaginationConfig.SEQUENTIAL_DELAY_SECONDS,
        batch_delay: float = PaginationConfig.BATCH_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.chunk_size = chunk_size
        self.max_total = max_total
        self.concurrency = max(1, concurrency)
        self.small_threshold = small_threshold
        self.parallel_chunk_size = parallel_chunk_size
        self.sequential_delay = sequential_delay
        self.batch_delay = batch_delay
        self._sleep = sleep

    async def smart_fetch(self, fetch_page: PageFetcher) -> PaginatedResult:
        """
        Probe the source and fetch with the matching strategy.

        Args:
            fetch_page: ``(page, limit) -> PageChunk`` coroutine function

        Returns:
            PaginatedResult with everything that could be fetched

        Raises:
            Exception: Only if the initial probe fails; later page failures
                end or skip that page instead
        """
        probe = await fetch_page(1, PaginationConfig.PROBE_LIMIT)
        total = probe.total if probe.total is not None else self.max_total

        if total <= 0:
            return PaginatedResult(total_available=0, chunks_processed=1)

        if total <= self.small_threshold:
            logger.debug(f"Small dataset ({total}), single request")
            return await self.fetch_sequential(
                fetch_page, chunk_size=total, max_total=min(total, self.max_total)
            )

        if total <= self.max_total:
            logger.debug(f"Moderate dataset ({total}), sequential chunks of {self.chunk_size}")
            return await self.fetch_sequential(fetch_page, chunk_size=self.chunk_size, max_total=total)

        logger.debug(
            f"Large dataset ({total}), parallel chunks of {self.parallel_chunk_size} "
            f"with concurrency {self.concurrency}"
        )
        return await self.fetch_parallel(fetch_page, total)

    async def fetch_sequential(
        self,
        fetch_page: PageFetcher,
        chunk_size: int,
        max_total: int,
    ) -> PaginatedResult:
        """
        Fetch pages one after another until exhausted or ``max_total`` reached.

        The final request asks only for the remaining slots. A failing page
        ends the fetch and whatever was gathered is returned.
        """
        result = PaginatedResult(total_available=max_total)
        page = 1

        while result.total_fetched < max_total:
            request_limit = min(chunk_size, max_total - result.total_fetched)
            try:
                chunk = await fetch_page(page, request_limit)
            except Exception as e:
                logger.warning(f"Sequential fetch stopped at page {page}: {e}")
                break

            result.chunks_processed += 1
            if chunk.total is not None:
                result.total_available = chunk.total
            result.data.extend(chunk.items)
            result.total_fetched = len(result.data)

            if not chunk.items or chunk.has_more is False or len(chunk.items) < request_limit:
                break

            page += 1
            if result.total_fetched < max_total:
                await self._sleep(self.sequential_delay)

        return result

    async def fetch_parallel(self, fetch_page: PageFetcher, total: int) -> PaginatedResult:
        """
        Fetch the first page, then the rest in concurrent batches.

        At most ``max_total`` records are requested. Failed pages, the first
        one included, are logged and skipped; successful pages are kept in
        page order.
        """
        chunk_size = self.parallel_chunk_size
        target = min(total, self.max_total)
        total_pages = math.ceil(target / chunk_size)

        result = PaginatedResult(total_available=total)
        try:
            first = await fetch_page(1, chunk_size)
        except Exception as e:
            logger.warning(f"Parallel fetch failed for page 1: {e}")
        else:
            result.data.extend(first.items)
            if first.total is not None:
                result.total_available = first.total
            result.chunks_processed = 1

        remaining = list(range(2, total_pages + 1))
        for start in range(0, len(remaining), self.concurrency):
            if start > 0:
                await self._sleep(self.batch_delay)

            batch = remaining[start:start + self.concurrency]
            chunks = await asyncio.gather(
                *(fetch_page(page, chunk_size) for page in batch),
                return_exceptions=True,
            )

            for page, chunk in zip(batch, chunks):
                if isinstance(chunk, BaseException):
                    logger.warning(f"Parallel fetch failed for page {page}: {chunk}")
                    continue
                result.data.extend(chunk.items)
                result.chunks_processed += 1

        result.data = result.data[:target]
        result.total_fetched = len(result.data)

        logger.info(
            f"Parallel fetch complete: {result.total_fetched}/{result.total_available} records",
            extra={"chunks": result.chunks_processed, "pages": total_pages},
        )
        return result
