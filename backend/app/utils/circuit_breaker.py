"""
Circuit breaker for external dependencies

CLOSED -> OPEN after ``failure_threshold`` consecutive failures.
OPEN -> HALF_OPEN once ``reset_timeout`` has elapsed since the last failure.
HALF_OPEN -> CLOSED after ``success_threshold`` successes, back to OPEN on any failure.
"""

import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from app.config import get_settings
from .exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitBreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Per-dependency failure isolation"""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        success_threshold: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.success_threshold = success_threshold
        self._clock = clock

        self._state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None

    @property
    def state(self) -> CircuitBreakerState:
        self._check_half_open()
        return self._state

    def _check_half_open(self) -> None:
        if (
            self._state == CircuitBreakerState.OPEN
            and self.last_failure_time is not None
            and self._clock() - self.last_failure_time >= self.reset_timeout
        ):
            self._state = CircuitBreakerState.HALF_OPEN
            self.success_count = 0
            logger.debug(f"Circuit {self.name} moved to HALF_OPEN")

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Invoke ``operation`` through the breaker"""
        self._check_half_open()
        if self._state == CircuitBreakerState.OPEN:
            raise CircuitOpenError(self.name)

        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self) -> None:
        if self._state == CircuitBreakerState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self.reset()
                logger.info(f"Circuit {self.name} recovered, now CLOSED")
        else:
            self.failure_count = 0

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self._state == CircuitBreakerState.HALF_OPEN:
            self._state = CircuitBreakerState.OPEN
            self.success_count = 0
            logger.warning(f"Circuit {self.name} re-opened after failed probe")
        elif self.failure_count >= self.failure_threshold:
            self._state = CircuitBreakerState.OPEN
            logger.warning(
                f"Circuit {self.name} OPEN after {self.failure_count} failures"
            )

    def reset(self) -> None:
        """Force CLOSED and zero all counters"""
        self._state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
        }


# Process-wide registry, one breaker per dependency name
_breakers: Dict[str, CircuitBreaker] = {}


def get_breaker(name: str, **options: Any) -> CircuitBreaker:
    """Get or create the breaker for a dependency"""
    breaker = _breakers.get(name)
    if breaker is None:
        settings = get_settings()
        options.setdefault("failure_threshold", settings.CIRCUIT_FAILURE_THRESHOLD)
        options.setdefault("reset_timeout", settings.CIRCUIT_RESET_TIMEOUT)
        options.setdefault("success_threshold", settings.CIRCUIT_SUCCESS_THRESHOLD)
        breaker = CircuitBreaker(name, **options)
        _breakers[name] = breaker
    return breaker


def reset_all_breakers() -> None:
    for breaker in _breakers.values():
        breaker.reset()


def breaker_snapshot() -> Dict[str, Dict[str, Any]]:
    return {name: breaker.snapshot() for name, breaker in _breakers.items()}
