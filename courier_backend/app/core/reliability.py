"""
Guards for calls to the maps provider: a circuit breaker and a timeout.
"""

import asyncio
import enum
import logging
import time
from typing import Any, Awaitable, Callable

from courier_backend.app.core.config import settings

logger = logging.getLogger(__name__)


class CircuitOpenError(Exception):
    pass


class BreakerState(str, enum.Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    Opens after ``failure_threshold`` consecutive failures and rejects calls
    for ``reset_timeout`` seconds. The first call after that is a trial call: it
    closes the circuit on success and reopens it on failure.
    """

    def __init__(self, failure_threshold: int = 5, reset_timeout: int = 60, name: str = "breaker"):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = BreakerState.CLOSED

    def _admit(self):
        if self.state != BreakerState.OPEN:
            return
        if time.monotonic() - self.last_failure_time < self.reset_timeout:
            raise CircuitOpenError(f"{self.name} circuit is open")
        self.state = BreakerState.HALF_OPEN

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.monotonic()
        if self.state == BreakerState.HALF_OPEN or self.failures >= self.failure_threshold:
            if self.state != BreakerState.OPEN:
                logger.warning("%s circuit opened after %d failures", self.name, self.failures)
            self.state = BreakerState.OPEN

    def record_success(self):
        if self.state == BreakerState.HALF_OPEN:
            logger.info("%s circuit closed", self.name)
        self.failures = 0
        self.state = BreakerState.CLOSED


async def with_timeout(coro, seconds: float):
    """Await ``coro``; raises asyncio.TimeoutError after ``seconds``."""
    return await asyncio.wait_for(coro, timeout=seconds)


geocoding_circuit_breaker = CircuitBreaker(
    failure_threshold=settings.geocoding_failure_threshold,
    reset_timeout=settings.geocoding_reset_timeout,
    name="maps",
)
