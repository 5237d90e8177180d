"""
marketplace_auth.auth.circuit_breaker

Per-service circuit breaker used to skip failing authentication strategies.

Responsibilities:
- Track consecutive failures per named service.
- Open the circuit at the failure threshold; move to half-open lazily after the reset timeout.
- Close the circuit on the next recorded success.
"""

from __future__ import annotations

import enum
import time
from collections.abc import Callable
from dataclasses import dataclass

from marketplace_auth.observability.logging import get_logger

log = get_logger(__name__)


class BreakerState(enum.StrEnum):
    closed = "closed"
    open = "open"
    half_open = "half-open"


@dataclass(slots=True)
class CircuitBreakerState:
    failure_count: int = 0
    last_failure_time: float | None = None
    state: BreakerState = BreakerState.closed


class CircuitBreaker:
    """
    Independent closed/open/half-open state per service name.

    `is_open` is the only read path callers should consult before attempting work.
    Counters are shared across concurrent requests without locking; they are a
    best-effort availability guard.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        reset_timeout_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout_s = reset_timeout_s
        self._clock = clock
        self._services: dict[str, CircuitBreakerState] = {}

    def _entry(self, service: str) -> CircuitBreakerState:
        entry = self._services.get(service)
        if entry is None:
            entry = self._services[service] = CircuitBreakerState()
        return entry

    def is_open(self, service: str) -> bool:
        entry = self._services.get(service)
        if entry is None or entry.state != BreakerState.open:
            return False

        last_failure = entry.last_failure_time or 0.0
        if self._clock() - last_failure > self.reset_timeout_s:
            entry.state = BreakerState.half_open
            log.info("circuit_half_open", service=service, failure_count=entry.failure_count)
            return False
        return True

    def record_success(self, service: str) -> None:
        entry = self._entry(service)
        if entry.state != BreakerState.closed:
            log.info("circuit_closed", service=service)
        entry.failure_count = 0
        entry.state = BreakerState.closed

    def record_failure(self, service: str) -> None:
        # Half-open is not special-cased: one failed trial re-opens the circuit.
        entry = self._entry(service)
        entry.failure_count += 1
        entry.last_failure_time = self._clock()

        if entry.failure_count >= self.failure_threshold:
            entry.state = BreakerState.open
            log.warning("circuit_opened", service=service, failure_count=entry.failure_count)

    def get_state(self, service: str) -> BreakerState:
        entry = self._services.get(service)
        return entry.state if entry else BreakerState.closed

    def snapshot(self, service: str) -> CircuitBreakerState:
        entry = self._services.get(service)
        if entry is None:
            return CircuitBreakerState()
        return CircuitBreakerState(
            failure_count=entry.failure_count,
            last_failure_time=entry.last_failure_time,
            state=entry.state,
        )


# --- Module Notes -----------------------------------------------------------
# The breaker does no I/O and never raises; strategies stay unaware of it. The
# orchestrator (`auth.service`) owns all bookkeeping.
