import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from fee_tracker.core.errors import ProviderError

logger = logging.getLogger(__name__)


def is_transient(exc: BaseException) -> bool:
    """Timeouts, dropped connections, 5xx/429 and provider status "0" errors are retried."""
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, TimeoutError, ProviderError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status == 429
    return False


@dataclass
class RetryPolicy:
    """
    Explicit retry policy applied around a single awaitable call.

    Backoff is linear: the wait after the n-th failed attempt is n * base_delay.
    `sleep` is injectable so tests can run the policy without real delays.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    retryable: Callable[[BaseException], bool] = is_transient
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep)
    name: str = "call"

    def _log_retry(self, retry_state: RetryCallState):
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        if isinstance(exc, ProviderError):
            logger.warning(
                f"{self.name}: provider error on attempt {retry_state.attempt_number}/{self.max_attempts} "
                f"({exc.reason}) - retrying in {wait:.1f}s"
            )
        else:
            logger.warning(
                f"{self.name}: attempt {retry_state.attempt_number}/{self.max_attempts} failed "
                f"({type(exc).__name__}: {exc}) - retrying in {wait:.1f}s"
            )

    async def call(self, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run `fn` under this policy; the last exception propagates once attempts run out."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay),
            retry=retry_if_exception(self.retryable),
            sleep=self.sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        return await retrying(fn, *args, **kwargs)


class CircuitBreaker:
    """Simple circuit breaker to prevent cascade failures"""
    def __init__(
        self,
        failure_threshold: int = 3,
        timeout_seconds: int = 60,
        clock: Optional[Callable[[], float]] = None
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout_seconds
        self.clock = clock or time.monotonic
        self.failures = 0
        self.last_failure_time = None
        self.state = "closed"  # closed, open, half_open

    def record_success(self):
        """Reset on success"""
        self.failures = 0
        self.state = "closed"
        self.last_failure_time = None

    def record_failure(self):
        """Increment failure count"""
        self.failures += 1
        self.last_failure_time = self.clock()
        if self.failures >= self.failure_threshold:
            self.state = "open"

    def can_attempt(self) -> bool:
        """Check if we can make a request"""
        if self.state == "closed":
            return True

        if self.state == "open":
            # Check if timeout has passed
            if self.clock() - self.last_failure_time > self.timeout:
                self.state = "half_open"
                return True
            return False

        # half_open state - allow one request to test
        return True
