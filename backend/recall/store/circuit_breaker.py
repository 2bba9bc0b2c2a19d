"""
Fail-fast guard for remote document store backends.

A memory tier that cannot reach its store degrades for the request. When the
backend is down, waiting out a socket timeout on every request only makes
the degraded path slow, so the store consults this breaker before each call:

- CLOSED: calls go through; each failure counts against the threshold and
  each success pays one back.
- OPEN: calls are rejected without touching the backend until
  ``recovery_timeout`` seconds have passed since the last failure.
- HALF_OPEN: calls go through as trials; ``half_open_max_calls`` successes
  close the circuit, a single failure reopens it.
"""

import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from recall.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = auto()
    OPEN = auto()
    HALF_OPEN = auto()


@dataclass
class CircuitBreakerConfig:
    """Thresholds for one store backend."""
    failure_threshold: int = 5          # Net failed store calls before opening
    recovery_timeout: float = 30.0      # Seconds a circuit stays open
    half_open_max_calls: int = 3        # Trial successes needed to close


class CircuitBreaker:
    """
    Per-backend breaker driven by the store that owns it.

    The breaker never performs I/O. The store calls ``allow_request()``
    before a backend call and reports the outcome with ``record_success()``
    or ``record_failure()``.

    Args:
        name: Backend name used in log lines (e.g. "redis")
        config: Thresholds; defaults to CircuitBreakerConfig()
    """

    def __init__(self, name: str, config: Optional[CircuitBreakerConfig] = None):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.opened_at: Optional[float] = None

    def _transition(self, state: CircuitState, reason: str) -> None:
        previous, self.state = self.state, state
        self.success_count = 0
        log = logger.warning if state == CircuitState.OPEN else logger.info
        log(
            f"Store circuit {previous.name} -> {state.name} ({self.name}): {reason}",
            extra={"backend": self.name, "circuit_state": state.name, "failures": self.failure_count},
        )

    def seconds_until_retry(self) -> float:
        """Time left before an open circuit lets a trial call through; 0 otherwise."""
        if self.state != CircuitState.OPEN or self.opened_at is None:
            return 0.0
        elapsed = time.monotonic() - self.opened_at
        return max(0.0, self.config.recovery_timeout - elapsed)

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.half_open_max_calls:
                self.failure_count = 0
                self._transition(CircuitState.CLOSED, "backend recovered")
        elif self.state == CircuitState.CLOSED and self.failure_count:
            self.failure_count -= 1

    def record_failure(self) -> None:
        self.failure_count += 1
        if self.state == CircuitState.HALF_OPEN:
            self.opened_at = time.monotonic()
            self._transition(CircuitState.OPEN, "trial call failed")
        elif self.state == CircuitState.CLOSED and self.failure_count >= self.config.failure_threshold:
            self.opened_at = time.monotonic()
            self._transition(CircuitState.OPEN, f"{self.failure_count} failed calls")

    def get_state(self) -> CircuitState:
        """Current state; an open circuit past its recovery timeout moves to HALF_OPEN."""
        if self.state == CircuitState.OPEN and self.seconds_until_retry() == 0.0:
            self._transition(CircuitState.HALF_OPEN, "recovery timeout elapsed")
        return self.state

    def allow_request(self) -> bool:
        return self.get_state() != CircuitState.OPEN
