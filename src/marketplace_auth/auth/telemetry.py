"""
marketplace_auth.auth.telemetry

Auth event logging and local telemetry buffering.

Responsibilities:
- Emit correlation-id tagged structlog events for auth attempts, successes and failures.
- Record `AuthError`s and `PerformanceMetric`s into an injected `TelemetrySink`.
- Provide a bounded in-memory sink used until a real exporter is wired in.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from marketplace_auth.auth.errors import AuthError, new_correlation_id
from marketplace_auth.observability.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PerformanceMetric:
    operation: str
    duration_ms: float
    success: bool
    correlation_id: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


class TelemetrySink(Protocol):
    def record_error(self, error: AuthError) -> None: ...

    def record_metric(self, metric: PerformanceMetric) -> None: ...


class BufferedTelemetrySink:
    """
    Fire-and-forget local buffer.

    Each queue is cleared once it reaches its size limit; nothing is persisted.
    Override `_flush_errors` / `_flush_metrics` to ship batches somewhere durable.
    """

    def __init__(self, *, max_errors: int = 10, max_metrics: int = 20) -> None:
        self._max_errors = max_errors
        self._max_metrics = max_metrics
        self._errors: deque[AuthError] = deque()
        self._metrics: deque[PerformanceMetric] = deque()

    def record_error(self, error: AuthError) -> None:
        self._errors.append(error)
        if len(self._errors) >= self._max_errors:
            self._flush_errors(list(self._errors))
            self._errors.clear()

    def record_metric(self, metric: PerformanceMetric) -> None:
        self._metrics.append(metric)
        if len(self._metrics) >= self._max_metrics:
            self._flush_metrics(list(self._metrics))
            self._metrics.clear()

    def recent_errors(self) -> list[AuthError]:
        return list(self._errors)

    def recent_metrics(self) -> list[PerformanceMetric]:
        return list(self._metrics)

    def _flush_errors(self, batch: list[AuthError]) -> None:
        log.debug("telemetry_errors_dropped", count=len(batch))

    def _flush_metrics(self, batch: list[PerformanceMetric]) -> None:
        log.debug("telemetry_metrics_dropped", count=len(batch))


class AuthLogger:
    def __init__(self, sink: TelemetrySink) -> None:
        self._sink = sink

    @property
    def sink(self) -> TelemetrySink:
        return self._sink

    def generate_correlation_id(self) -> str:
        return new_correlation_id()

    def log_auth_attempt(self, user_id: str, method: str, correlation_id: str) -> None:
        log.info("auth_attempt", correlation_id=correlation_id, user_id=user_id, auth_method=method)

    def log_auth_success(self, user_id: str, profile_id: str | None, correlation_id: str) -> None:
        log.info(
            "auth_success",
            correlation_id=correlation_id,
            user_id=user_id,
            profile_id=profile_id,
        )

    def log_auth_failure(self, error: AuthError) -> None:
        log.error(
            "auth_failure",
            correlation_id=error.correlation_id,
            error_type=error.type.value,
            error_message=error.message,
            severity=error.severity.value,
            retryable=error.retryable,
            endpoint=error.context.endpoint,
            auth_method=error.context.method,
            user_id=error.context.user_id,
            details=repr(error.details) if error.details is not None else None,
        )
        self._sink.record_error(error)

    def log_performance_metric(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        correlation_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> PerformanceMetric:
        metric = PerformanceMetric(
            operation=operation,
            duration_ms=duration_ms,
            success=success,
            correlation_id=correlation_id,
            timestamp=datetime.now(tz=UTC),
            metadata=dict(metadata or {}),
        )
        log.info(
            "performance_metric",
            correlation_id=correlation_id,
            operation=operation,
            duration_ms=round(duration_ms, 2),
            success=success,
        )
        self._sink.record_metric(metric)
        return metric


# --- Module Notes -----------------------------------------------------------
# One AuthLogger/sink pair is built per app in `api.app.create_app` and shared by
# both authentication services.
