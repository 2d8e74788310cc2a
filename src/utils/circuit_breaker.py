"""Circuit breaker guarding content oracle calls.

A provider that keeps failing is blocked for a cool-down period so a batch
of subtitle tracks fails fast instead of waiting on every request's
timeout. The breaker never retries: the failing call's exception is
re-raised unchanged, and calls made while the circuit is open raise
``CircuitBreakerError``.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from functools import wraps
from typing import Any, TypeVar

import aiohttp

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Calls pass through
    OPEN = "OPEN"  # Calls fail immediately
    HALF_OPEN = "HALF_OPEN"  # One trial call allowed


class CircuitBreakerError(Exception):
    """Raised when a call is attempted while the circuit is OPEN."""

    pass


class CircuitBreaker:
    """Consecutive-failure breaker for async callables.

    Args:
    ----
        failure_threshold: Consecutive failures that open the circuit
        timeout: Seconds the circuit stays open before a trial call
        expected_exceptions: Exception types that count as failures
        name: Human-readable name for logging

    """

    def __init__(
        self,
        failure_threshold: int = 3,
        timeout: int = 30,
        expected_exceptions: tuple[type[BaseException], ...] = (Exception,),
        name: str = "CircuitBreaker",
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.expected_exceptions = expected_exceptions
        self.name = name

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: float | None = None

        self.total_calls = 0
        self.failed_calls = 0
        self.rejected_calls = 0

    def __call__(
        self, func: Callable[..., Awaitable[T]]
    ) -> Callable[..., Awaitable[T]]:
        """Decorate an async function with this breaker."""
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"Circuit breaker {self.name} only wraps async functions")

        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await self.call(func, *args, **kwargs)

        return wrapper

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        self._before_call()
        self.total_calls += 1
        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _before_call(self) -> None:
        if self.state is not CircuitState.OPEN:
            return

        remaining = (self.opened_at or 0.0) + self.timeout - time.monotonic()
        if remaining > 0:
            self.rejected_calls += 1
            logger.warning(
                f"Circuit breaker {self.name} is OPEN, failing fast. "
                f"Next attempt in {remaining:.1f}s"
            )
            raise CircuitBreakerError(
                f"Circuit breaker {self.name} is OPEN. Content oracle temporarily "
                f"unavailable."
            )

        self.state = CircuitState.HALF_OPEN
        logger.info(f"Circuit breaker {self.name} attempting recovery - state: HALF_OPEN")

    def _on_success(self) -> None:
        self.failure_count = 0
        if self.state is CircuitState.HALF_OPEN:
            self.state = CircuitState.CLOSED
            self.opened_at = None
            logger.info(f"Circuit breaker {self.name} recovered - state: CLOSED")

    def _on_failure(self, exception: BaseException) -> None:
        self.failed_calls += 1
        self.failure_count += 1
        logger.warning(
            f"Circuit breaker {self.name} - failure "
            f"{self.failure_count}/{self.failure_threshold}: {exception!r}"
        )

        if (
            self.state is CircuitState.HALF_OPEN
            or self.failure_count >= self.failure_threshold
        ):
            self.state = CircuitState.OPEN
            self.opened_at = time.monotonic()
            logger.error(
                f"Circuit breaker {self.name} OPENED. Will allow a trial call "
                f"after {self.timeout}s"
            )

    @property
    def is_closed(self) -> bool:
        return self.state is CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "total_calls": self.total_calls,
            "failed_calls": self.failed_calls,
            "rejected_calls": self.rejected_calls,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "timeout": self.timeout,
        }

    def reset(self) -> None:
        """Force the circuit back to CLOSED."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at = None
        logger.info(f"Circuit breaker {self.name} manually reset to CLOSED")


content_oracle_circuit_breaker = CircuitBreaker(
    failure_threshold=2,
    timeout=30,
    expected_exceptions=(
        aiohttp.ClientError,
        asyncio.TimeoutError,
        ConnectionError,
        OSError,
    ),
    name="ContentOracle",
)
