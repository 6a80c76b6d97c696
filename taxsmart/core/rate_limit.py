"""Shared concurrency, retry and per-client rate-limiting utilities."""
import asyncio
import logging
import math
import random
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import anyio

from .exceptions import RateLimitExceededError

T = TypeVar("T")


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, operation_name: str, last_exception: Exception, attempts: int):
        self.operation_name = operation_name
        self.last_exception = last_exception
        self.attempts = attempts
        super().__init__(
            f"{operation_name} failed after {attempts} attempts: {last_exception}"
        )


class CapacityLimiter:
    """Async capacity limiter wrapping ``anyio.CapacityLimiter``.

    One instance is shared by every request so the number of in-flight
    Gemini calls stays under the API quota.
    """

    def __init__(self, total_tokens: int):
        """Initialize capacity limiter with total capacity."""
        self.total_tokens = total_tokens
        self._limiter = anyio.CapacityLimiter(total_tokens)

    async def __aenter__(self):
        """Async context manager entry."""
        await self._limiter.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self._limiter.__aexit__(exc_type, exc_val, exc_tb)

    @property
    def available_tokens(self) -> int:
        """Get available tokens/capacity."""
        return int(self._limiter.available_tokens)

    @property
    def borrowed_tokens(self) -> int:
        """Get borrowed tokens/capacity."""
        return self._limiter.borrowed_tokens


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 2.0,
    max_delay: float = 10.0,
    jitter_range: float = 3.0,
    retry_exceptions: tuple = (Exception,),
    operation_name: str | None = None,
    logger: logging.Logger | None = None
) -> T:
    """Execute an async operation with exponential backoff retry logic.

    Args:
        operation: Async function to execute
        max_retries: Maximum number of attempts (default: 3); 1 disables retrying
        base_delay: Base delay for exponential backoff (default: 2.0 seconds)
        max_delay: Maximum delay between retries (default: 10.0 seconds)
        jitter_range: Random jitter range added to delay (default: 3.0 seconds)
        retry_exceptions: Tuple of exceptions that should trigger retry (default: (Exception,))
        operation_name: Name for logging purposes (optional)
        logger: Logger instance to use (optional, defaults to module logger)

    Returns:
        Result of successful operation

    Raises:
        RetryError: When all attempts failed with a retryable exception.
            Any other exception propagates unchanged on first occurrence.
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    operation_desc = operation_name or "operation"
    attempts = max(1, max_retries)

    for attempt in range(attempts - 1):
        try:
            return await operation()
        except retry_exceptions as exc:
            # Calculate delay with exponential backoff and jitter
            delay = min(max_delay, base_delay * (2 ** attempt))
            jitter = random.uniform(0, jitter_range)
            total_delay = delay + jitter

            logger.warning(
                f"[RETRY] {operation_desc} - Attempt {attempt + 1}/{attempts} failed: "
                f"{str(exc)[:100]}. Retrying in {total_delay:.1f}s..."
            )
            await asyncio.sleep(total_delay)

    # Final attempt
    try:
        return await operation()
    except retry_exceptions as exc:
        if attempts > 1:
            logger.error(
                f"[RETRY] {operation_desc} - Exhausted retries ({attempts}): "
                f"{str(exc)[:150]}"
            )
        raise RetryError(operation_desc, exc, attempts) from exc


@dataclass
class _ClientWindow:
    count: int
    reset_at: float


class ClientRateLimiter:
    """Fixed-window request counter keyed by client address.

    Every call to ``check`` counts as an attempt, rejected ones included, so a
    client hammering the endpoint stays blocked until its window resets.
    The store is bounded: expired windows are swept every ``sweep_interval``
    seconds and, once ``max_clients`` are tracked, the least recently seen
    client is evicted to make room.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 3600,
        max_clients: int = 10000,
        sweep_interval: float | None = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_clients = max_clients
        self.sweep_interval = sweep_interval if sweep_interval is not None else window_seconds
        self._clock = clock
        self._windows: OrderedDict[str, _ClientWindow] = OrderedDict()
        self._next_sweep = clock() + self.sweep_interval
        self._logger = logging.getLogger(__name__)

    def __len__(self) -> int:
        return len(self._windows)

    def check(self, client_id: str) -> int:
        """Count a request for ``client_id``.

        Returns:
            Requests remaining in the current window

        Raises:
            RateLimitExceededError: When the client is over its allowance
        """
        now = self._clock()
        if now >= self._next_sweep:
            self.sweep(now)

        window = self._windows.get(client_id)
        if window is None or now > window.reset_at:
            window = _ClientWindow(count=0, reset_at=now + self.window_seconds)
            self._windows[client_id] = window
            self._evict_overflow()
        self._windows.move_to_end(client_id)

        window.count += 1
        if window.count > self.max_requests:
            retry_after = max(1, math.ceil(window.reset_at - now))
            self._logger.warning(
                f"[RATE] {client_id} over limit ({window.count}/{self.max_requests}), "
                f"retry after {retry_after}s"
            )
            raise RateLimitExceededError(client_id, retry_after, self.max_requests)
        return self.max_requests - window.count

    def sweep(self, now: float | None = None) -> int:
        """Drop expired windows; returns how many were removed."""
        now = self._clock() if now is None else now
        expired = [client for client, window in self._windows.items() if now > window.reset_at]
        for client in expired:
            del self._windows[client]
        self._next_sweep = now + self.sweep_interval
        if expired:
            self._logger.debug(f"[RATE] Swept {len(expired)} expired client window(s)")
        return len(expired)

    def _evict_overflow(self) -> None:
        while len(self._windows) > self.max_clients:
            client, _ = self._windows.popitem(last=False)
            self._logger.debug(f"[RATE] Evicted least recently seen client {client}")

    def reset(self) -> None:
        """Forget every client (used by tests and on settings reload)."""
        self._windows.clear()
        self._next_sweep = self._clock() + self.sweep_interval


def create_gemini_limiter(quota_limit: int = 10) -> CapacityLimiter:
    """Create the limiter shared by all Gemini calls."""
    return CapacityLimiter(quota_limit)
