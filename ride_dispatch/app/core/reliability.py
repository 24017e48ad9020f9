"""
Reliability utilities for the dispatch engine.

Includes the Circuit Breaker pattern and a time budget for store calls.
"""

import time
import asyncio
from typing import Awaitable, Callable, Any, TypeVar

from ride_dispatch.app.core.config import settings
from ride_dispatch.app.core.exceptions import StoreTimeoutError

T = TypeVar("T")


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    If 'failure_threshold' failures occur within 'reset_timeout',
    the circuit opens and rejects calls for 'reset_timeout' seconds.
    """
    def __init__(self, failure_threshold: int = 5, reset_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0
        self.state = "CLOSED" # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError("Circuit is OPEN")

        try:
            result = await func(*args, **kwargs)
            if self.state != "CLOSED" or self.failures:
                self.reset_state()
            return result
        except Exception:
            self.record_failure()
            raise

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.state == "HALF_OPEN" or self.failures >= self.failure_threshold:
            self.state = "OPEN"

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"


async def with_timeout(operation: str, awaitable: Awaitable[T], timeout_seconds: float = None) -> T:
    """
    Await a store call with a bounded time budget.

    Args:
        operation: Name used in the error and logs
        awaitable: Coroutine performing the store call
        timeout_seconds: Budget in seconds (defaults to settings)

    Returns:
        The awaited result

    Raises:
        StoreTimeoutError: If the budget expires
    """
    if timeout_seconds is None:
        timeout_seconds = settings.dispatch_store_timeout_seconds
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise StoreTimeoutError(operation, timeout_seconds) from exc
