"""
marketplace_auth.api.routers.health

Health and readiness endpoints.

Responsibilities:
- Provide liveness probe (`/healthz`).
- Provide readiness probe (`/readyz`) with profile store connectivity validation.
- Provide an auth health report (`/v1/health/auth`) combining live probes of the
  profile store and the auth provider with rates derived from recent metrics.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends

from marketplace_auth.api.deps import profiles_dep, provider_dep, settings_dep, telemetry_dep
from marketplace_auth.auth.middleware import OPERATION as MIDDLEWARE_OPERATION
from marketplace_auth.auth.service import OPERATION as AUTH_OPERATION
from marketplace_auth.auth.telemetry import AuthLogger, BufferedTelemetrySink, PerformanceMetric
from marketplace_auth.observability.logging import get_logger
from marketplace_auth.profiles.store import ProfileStore
from marketplace_auth.provider.client import SupabaseAuthClient
from marketplace_auth.settings import Settings

router = APIRouter()
log = get_logger(__name__)

DATABASE_DEGRADED_MS = 1000
PROVIDER_DEGRADED_MS = 500
DEGRADED_ERROR_RATE = 5.0
ACTIVE_USER_WINDOW = timedelta(minutes=5)

_AUTH_OPERATIONS = frozenset({AUTH_OPERATION, MIDDLEWARE_OPERATION})


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    # Liveness: process is up and serving HTTP.
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(profiles: ProfileStore = Depends(profiles_dep)) -> dict[str, str]:
    # Readiness: the profile store backs every successful authentication.
    await profiles.ping()
    return {"status": "ready"}


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


async def _probe(
    check: Callable[[], Awaitable[Any]],
    *,
    degraded_after_ms: float,
    ok_details: dict[str, Any],
) -> dict[str, Any]:
    started = time.perf_counter()
    try:
        await check()
    except Exception as e:
        return {
            "status": "unhealthy",
            "responseTime": round((time.perf_counter() - started) * 1000),
            "errorRate": 100,
            "lastCheck": _now_iso(),
            "details": {"error": str(e) or type(e).__name__},
        }
    elapsed = (time.perf_counter() - started) * 1000
    return {
        "status": "healthy" if elapsed < degraded_after_ms else "degraded",
        "responseTime": round(elapsed),
        "errorRate": 0,
        "lastCheck": _now_iso(),
        "details": ok_details,
    }


def _unconfigured(missing: list[str]) -> dict[str, Any]:
    return {
        "status": "unhealthy",
        "responseTime": 0,
        "errorRate": 100,
        "lastCheck": _now_iso(),
        "details": {"error": "not configured", "missing": missing},
    }


def _active_users(metrics: list[PerformanceMetric], now: datetime) -> int:
    cutoff = now - ACTIVE_USER_WINDOW
    return len(
        {
            m.metadata["user_id"]
            for m in metrics
            if m.success
            and m.operation in _AUTH_OPERATIONS
            and m.timestamp > cutoff
            and m.metadata.get("user_id")
        }
    )


def summarize_metrics(metrics: list[PerformanceMetric], *, now: datetime | None = None) -> dict[str, Any]:
    if not metrics:
        return {"responseTime": 0, "activeUsers": 0, "errorRate": 0, "successRate": 0}
    success_rate = sum(1 for m in metrics if m.success) / len(metrics) * 100
    return {
        "responseTime": round(sum(m.duration_ms for m in metrics) / len(metrics)),
        "activeUsers": _active_users(metrics, now or datetime.now(tz=UTC)),
        "errorRate": round(100 - success_rate, 2),
        "successRate": round(success_rate, 2),
    }


def overall_status(services: dict[str, dict[str, Any]], error_rate: float) -> str:
    statuses = [s["status"] for s in services.values()]
    if "unhealthy" in statuses:
        return "unhealthy"
    if "degraded" in statuses or error_rate > DEGRADED_ERROR_RATE:
        return "degraded"
    return "healthy"


@router.get("/v1/health/auth")
async def auth_health(
    settings: Settings = Depends(settings_dep),
    sink: BufferedTelemetrySink = Depends(telemetry_dep),
    profiles: ProfileStore = Depends(profiles_dep),
    provider: SupabaseAuthClient = Depends(provider_dep),
) -> dict[str, Any]:
    auth_logger = AuthLogger(sink)
    correlation_id = auth_logger.generate_correlation_id()
    started = time.perf_counter()
    auth_logger.log_auth_attempt("system", "health-check", correlation_id)

    missing = settings.missing_provider_settings()
    if missing:
        services = {"database": _unconfigured(missing), "provider": _unconfigured(missing)}
    else:
        services = {
            "database": await _probe(
                profiles.ping,
                degraded_after_ms=DATABASE_DEGRADED_MS,
                ok_details={"table": settings.profiles_table},
            ),
            "provider": await _probe(
                provider.health,
                degraded_after_ms=PROVIDER_DEGRADED_MS,
                ok_details={"authService": "operational"},
            ),
        }

    metrics = summarize_metrics(sink.recent_metrics())
    status = overall_status(services, metrics["errorRate"])
    if status != "healthy":
        log.warning("auth_health_not_healthy", status=status, services={k: v["status"] for k, v in services.items()})

    auth_logger.log_performance_metric(
        "health-check",
        (time.perf_counter() - started) * 1000,
        True,
        correlation_id,
    )
    return {
        "status": status,
        "services": services,
        "metrics": metrics,
        "timestamp": _now_iso(),
    }


# --- Module Notes -----------------------------------------------------------
# The auth report always answers 200; orchestrators should gate on `/readyz`.
# Rates cover only the bounded metric buffer, so they describe the last few
# operations rather than a time window.
