"""Source health tracking and circuit breaking.

A failing source never raises into a search; it is recorded here instead.
After repeated consecutive failures its circuit opens and the source is
skipped until a recovery window (with exponential backoff) has elapsed.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from loguru import logger


class ServiceState(Enum):
    """Source health states."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CIRCUIT_OPEN = "circuit_open"


@dataclass
class ErrorEvent:
    """Represents a source failure."""
    timestamp: datetime
    service: str
    error_type: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'service': self.service,
            'error_type': self.error_type,
            'message': self.message,
            'context': self.context
        }


@dataclass
class SourceHealth:
    """Tracks health of a source."""
    name: str
    state: ServiceState = ServiceState.HEALTHY
    error_count: int = 0
    success_count: int = 0
    last_error: Optional[ErrorEvent] = None
    last_success: Optional[datetime] = None
    consecutive_failures: int = 0

    @property
    def error_rate(self) -> float:
        total = self.error_count + self.success_count
        if total == 0:
            return 0.0
        return self.error_count / total

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'error_rate': round(self.error_rate, 3),
            'consecutive_failures': self.consecutive_failures,
            'successes': self.success_count,
            'errors': self.error_count,
            'last_error': self.last_error.to_dict() if self.last_error else None,
        }


class CircuitBreaker:
    """Circuit breaker guarding one source."""

    def __init__(self,
                 name: str,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize circuit breaker.

        Args:
            name: Source name
            failure_threshold: Consecutive failures before opening the circuit
            recovery_timeout: Seconds before a trial call is let through
            clock: Monotonic time source
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self.health = SourceHealth(name=name)
        self.recovery_attempts = 0
        self._opened_at: Optional[float] = None

    def allow(self) -> bool:
        """Whether a call may go through right now."""
        if self.health.state != ServiceState.CIRCUIT_OPEN:
            return True

        backoff = self.recovery_timeout * (2 ** min(self.recovery_attempts, 5))
        if self._opened_at is None or self._clock() - self._opened_at >= backoff:
            logger.info(f"Circuit breaker {self.name}: attempting recovery")
            self.recovery_attempts += 1
            self._opened_at = self._clock()
            return True
        return False

    def record_success(self) -> None:
        self.health.success_count += 1
        self.health.consecutive_failures = 0
        self.health.last_success = datetime.now()

        if self.health.state == ServiceState.CIRCUIT_OPEN:
            logger.info(f"Circuit breaker {self.name}: circuit closed after recovery")
            self.recovery_attempts = 0
            self._opened_at = None
        self.health.state = ServiceState.HEALTHY

    def record_failure(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        self.health.error_count += 1
        self.health.consecutive_failures += 1
        self.health.last_error = ErrorEvent(
            timestamp=datetime.now(),
            service=self.name,
            error_type=type(error).__name__,
            message=str(error),
            context=context or {}
        )

        if self.health.consecutive_failures >= self.failure_threshold:
            if self.health.state != ServiceState.CIRCUIT_OPEN:
                logger.warning(
                    f"Circuit breaker {self.name}: opening circuit after "
                    f"{self.health.consecutive_failures} failures"
                )
            self.health.state = ServiceState.CIRCUIT_OPEN
            self._opened_at = self._clock()
        else:
            self.health.state = ServiceState.DEGRADED

    def reset(self) -> None:
        self.health = SourceHealth(name=self.name)
        self.recovery_attempts = 0
        self._opened_at = None


class HealthRegistry:
    """Owns the breakers of all sources and summarizes them for diagnostics."""

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 window_size: int = 100):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.breakers: Dict[str, CircuitBreaker] = {}
        self.recent_errors: deque = deque(maxlen=window_size)

    def breaker(self, name: str) -> CircuitBreaker:
        if name not in self.breakers:
            self.breakers[name] = CircuitBreaker(
                name,
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout
            )
        return self.breakers[name]

    def record_failure(self, name: str, error: BaseException, **context) -> None:
        breaker = self.breaker(name)
        breaker.record_failure(error, context)
        self.recent_errors.append(breaker.health.last_error)

    def record_success(self, name: str) -> None:
        self.breaker(name).record_success()

    def summary(self) -> Dict[str, Any]:
        return {
            'sources': {name: cb.health.to_dict() for name, cb in self.breakers.items()},
            'recent_errors': [e.to_dict() for e in list(self.recent_errors)[-10:]],
        }
