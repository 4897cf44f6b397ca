"""
Sliding-window rate limiter for upstream catalog sources.

Each source gets its own RateLimiter. Work is queued FIFO and drained by a
single processing loop that admits at most ``max_requests`` tasks in any
trailing ``window_seconds`` window, pausing briefly between tasks.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from apicatalog.config import RateLimitConfig
from apicatalog.utils.exceptions import RateLimiterClearedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _QueuedTask:
    task: Callable[[], Awaitable[Any]]
    future: asyncio.Future


class RateLimiter:
    """
    FIFO admission control over a trailing time window.

    Features:
    - At most ``max_requests`` admissions per ``window_seconds``
    - Strict FIFO order across concurrent callers
    - One processing loop per instance, however many callers are waiting
    - Politeness delay between consecutive tasks
    - ``clear()`` fails all queued work

    Example:
        >>> limiter = RateLimiter("primary", max_requests=30, window_seconds=60)
        >>> data = await limiter.execute(lambda: session_get("/providers.json"))
    """

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_seconds: float,
        min_wait: float = RateLimitConfig.MIN_WAIT_SECONDS,
        politeness_delay: float = RateLimitConfig.POLITENESS_DELAY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize rate limiter.

        Args:
            name: Source name used in logs
            max_requests: Admissions allowed per window
            window_seconds: Window length in seconds
            min_wait: Shortest sleep while the window is full
            politeness_delay: Pause after each task
            clock: Monotonic time source (seconds)
            sleep: Coroutine used for every pause
        """
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.min_wait = min_wait
        self.politeness_delay = politeness_delay
        self._clock = clock
        self._sleep = sleep

        self._window: deque[float] = deque()
        self._queue: deque[_QueuedTask] = deque()
        self._processing = False
        self._loop_task: Optional[asyncio.Future] = None

        logger.debug(
            f"RateLimiter '{name}' initialized: {max_requests} requests / {window_seconds}s"
        )

    @classmethod
    def from_preset(cls, preset: str, name: Optional[str] = None, **kwargs) -> "RateLimiter":
        """Build a limiter from a named RateLimitConfig preset."""
        max_requests, window_seconds = RateLimitConfig.get_preset(preset)
        return cls(name or preset, max_requests, window_seconds, **kwargs)

    def _prune(self, now: float) -> None:
        while self._window and now - self._window[0] >= self.window_seconds:
            self._window.popleft()

    async def execute(self, task: Callable[[], Awaitable[T]]) -> T:
        """
        Queue a task and wait for its result.

        Args:
            task: Zero-argument coroutine function

        Returns:
            Whatever the task returns

        Raises:
            RateLimiterClearedError: If the limiter is cleared while queued
            Exception: Whatever the task raised
        """
        future = asyncio.get_running_loop().create_future()
        self._queue.append(_QueuedTask(task, future))

        if not self._processing:
            # Set before scheduling so concurrent callers don't start a second loop
            self._processing = True
            self._loop_task = asyncio.ensure_future(self._process_queue())

        return await future

    async def _process_queue(self) -> None:
        try:
            while self._queue:
                now = self._clock()
                self._prune(now)

                if len(self._window) >= self.max_requests:
                    wait = max(self._window[0] + self.window_seconds - now, self.min_wait)
                    logger.debug(
                        f"RateLimiter '{self.name}' window full, waiting {wait:.2f}s",
                        extra={"queue_length": len(self._queue)},
                    )
                    await self._sleep(wait)
                    continue

                item = self._queue.popleft()
                if item.future.done():
                    continue

                self._window.append(now)
                try:
                    result = await item.task()
                except asyncio.CancelledError:
                    if not item.future.done():
                        item.future.cancel()
                    current = asyncio.current_task()
                    if current is not None and current.cancelling():
                        raise
                    logger.warning(f"RateLimiter '{self.name}' task was cancelled")
                except Exception as e:
                    if not item.future.done():
                        item.future.set_exception(e)
                except BaseException as e:
                    if not item.future.done():
                        item.future.set_exception(e)
                    raise
                else:
                    if not item.future.done():
                        item.future.set_result(result)

                await self._sleep(self.politeness_delay)
        finally:
            self._processing = False
            # Nothing is left to drain the queue once the loop exits abnormally
            stranded = self._reject_queued()
            if stranded:
                logger.error(f"RateLimiter '{self.name}' loop stopped, rejected {stranded} queued tasks")

    def get_status(self) -> dict:
        """
        Current limiter state (read only).

        Returns:
            Dictionary with requestsInWindow, queueLength and canMakeRequest
        """
        now = self._clock()
        in_window = sum(1 for t in self._window if now - t < self.window_seconds)
        return {
            "requestsInWindow": in_window,
            "queueLength": len(self._queue),
            "canMakeRequest": in_window < self.max_requests,
        }

    def _reject_queued(self) -> int:
        rejected = 0
        while self._queue:
            item = self._queue.popleft()
            if not item.future.done():
                item.future.set_exception(RateLimiterClearedError(self.name))
                rejected += 1
        return rejected

    def clear(self) -> int:
        """
        Fail every queued task and reset the window.

        Returns:
            Number of tasks that were rejected
        """
        rejected = self._reject_queued()
        self._window.clear()

        if rejected:
            logger.warning(f"RateLimiter '{self.name}' cleared, rejected {rejected} queued tasks")
        return rejected

    def __repr__(self) -> str:
        return (
            f"RateLimiter(name={self.name!r}, max_requests={self.max_requests}, "
            f"window_seconds={self.window_seconds}, queued={len(self._queue)})"
        )
