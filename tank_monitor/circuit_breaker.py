"""
Circuit Breaker and Retry Module

Resilience patterns for calls to the central tank server:
- Circuit Breaker: Stops hammering an upstream that keeps failing
- Exponential Backoff: Retry transient transport errors with growing delays
"""

import functools
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Optional, Tuple, Type

from tank_monitor.errors import TankSyncError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states"""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Failing, reject all calls
    HALF_OPEN = "HALF_OPEN"  # One trial call allowed


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker"""

    failure_threshold: int = 5  # Consecutive failures before opening
    timeout_seconds: float = 60.0  # Time before the trial call


@dataclass
class CircuitStats:
    """Statistics for circuit breaker"""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    last_failure_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None
    consecutive_failures: int = 0


class CircuitBreakerOpenError(TankSyncError):
    """Raised when circuit breaker is open"""

    pass


class CircuitBreaker:
    """
    Circuit Breaker Pattern Implementation

    States:
    - CLOSED: Normal operation, calls pass through
    - OPEN: Service failing, all calls rejected immediately
    - HALF_OPEN: After timeout_seconds one trial call runs; success closes
      the circuit, failure reopens it

    Usage:
        breaker = CircuitBreaker("tank_server")
        try:
            sites = breaker.execute(client.fetch_all_sites)
        except CircuitBreakerOpenError:
            ...  # skip this cycle
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitState.CLOSED
        self.stats = CircuitStats()
        self._clock = clock
        self._lock = Lock()
        self._last_state_change = clock()

    def execute(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection"""
        if not self.can_execute():
            raise CircuitBreakerOpenError(
                f"Circuit breaker '{self.name}' is OPEN. "
                f"Failures: {self.stats.consecutive_failures}"
            )

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def can_execute(self) -> bool:
        """Check if circuit allows execution (counts rejections)"""
        with self._lock:
            if self.state == CircuitState.OPEN:
                elapsed = self._clock() - self._last_state_change
                if elapsed >= self.config.timeout_seconds:
                    self._transition_to(CircuitState.HALF_OPEN)
                else:
                    self.stats.rejected_calls += 1
                    return False

            self.stats.total_calls += 1
            return True

    def record_success(self):
        """Record successful call"""
        with self._lock:
            self.stats.successful_calls += 1
            self.stats.consecutive_failures = 0
            self.stats.last_success_time = datetime.now(timezone.utc)

            if self.state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
                logger.info(f"🟢 Circuit '{self.name}' CLOSED (service recovered)")

    def record_failure(self, exception: Exception = None):
        """Record failed call"""
        with self._lock:
            self.stats.failed_calls += 1
            self.stats.consecutive_failures += 1
            self.stats.last_failure_time = datetime.now(timezone.utc)

            if self.state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
                logger.warning(
                    f"🔴 Circuit '{self.name}' OPEN (failed during recovery): {exception}"
                )

            elif self.state == CircuitState.CLOSED:
                if self.stats.consecutive_failures >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN)
                    logger.warning(
                        f"🔴 Circuit '{self.name}' OPEN after "
                        f"{self.stats.consecutive_failures} failures"
                    )

    def _transition_to(self, new_state: CircuitState):
        """Transition to new state (caller holds the lock)"""
        self.state = new_state
        self._last_state_change = self._clock()

        if new_state == CircuitState.HALF_OPEN:
            logger.info(f"🟡 Circuit '{self.name}' HALF_OPEN (testing recovery)")

    def get_status(self) -> Dict:
        """Get current status"""
        return {
            "name": self.name,
            "state": self.state.value,
            "stats": {
                "total_calls": self.stats.total_calls,
                "successful_calls": self.stats.successful_calls,
                "failed_calls": self.stats.failed_calls,
                "rejected_calls": self.stats.rejected_calls,
                "consecutive_failures": self.stats.consecutive_failures,
            },
            "last_failure": (
                self.stats.last_failure_time.isoformat()
                if self.stats.last_failure_time
                else None
            ),
        }


@dataclass
class RetryConfig:
    """Configuration for retry with exponential backoff"""

    max_retries: int = 2
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True  # Add randomness to prevent thundering herd
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)


def retry_with_backoff(
    config: RetryConfig = None,
    on_retry: Callable[[int, Exception], None] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator for retry with exponential backoff

    Only exceptions listed in config.retry_on are retried; anything else
    propagates on the first attempt.

    Usage:
        @retry_with_backoff(RetryConfig(max_retries=2, retry_on=(ConnectionError,)))
        def flaky_operation():
            ...
    """
    config = config or RetryConfig()

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(config.max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except config.retry_on as e:
                    if attempt == config.max_retries:
                        logger.error(
                            f"❌ {func.__name__} failed after "
                            f"{config.max_retries + 1} attempts: {e}"
                        )
                        raise

                    delay = min(
                        config.base_delay_seconds * (config.exponential_base**attempt),
                        config.max_delay_seconds,
                    )

                    # Add jitter (0-50% of delay)
                    if config.jitter:
                        delay *= 1 + random.random() * 0.5

                    logger.warning(
                        f"⚠️ {func.__name__} attempt {attempt + 1} failed: {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )

                    if on_retry:
                        on_retry(attempt + 1, e)

                    sleep(delay)

        return wrapper

    return decorator
