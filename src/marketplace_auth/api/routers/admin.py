"""
marketplace_auth.api.routers.admin

Operator endpoints for the authentication core.

Responsibilities:
- Expose per-strategy circuit breaker state.
- Expose the most recent buffered auth errors and performance metrics.

Both routes require the `admin` role.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from marketplace_auth.api.deps import telemetry_dep
from marketplace_auth.auth.deps import auth_service_dep, require_roles
from marketplace_auth.auth.service import AuthenticationService
from marketplace_auth.auth.telemetry import BufferedTelemetrySink

router = APIRouter(
    prefix="/v1/admin",
    tags=["admin"],
    dependencies=[Depends(require_roles("admin"))],
)


@router.get("/circuit-breakers")
async def circuit_breakers(
    service: AuthenticationService = Depends(auth_service_dep),
) -> dict[str, Any]:
    breaker = service.circuit_breaker
    items = []
    for strategy in service.strategies:
        snap = breaker.snapshot(strategy.name)
        items.append(
            {
                "name": strategy.name,
                "priority": strategy.priority,
                "state": breaker.get_state(strategy.name).value,
                "failures": snap.failure_count,
            }
        )
    return {"circuitBreakers": items}


@router.get("/auth-telemetry")
async def auth_telemetry(
    sink: BufferedTelemetrySink = Depends(telemetry_dep),
) -> dict[str, Any]:
    return {
        "errors": [e.to_dict() for e in sink.recent_errors()],
        "metrics": [
            {
                "operation": m.operation,
                "durationMs": round(m.duration_ms, 2),
                "success": m.success,
                "correlationId": m.correlation_id,
                "timestamp": m.timestamp.isoformat(),
            }
            for m in sink.recent_metrics()
        ],
    }


# --- Module Notes -----------------------------------------------------------
# Telemetry buffers are per-process and bounded; this is a debugging view, not an
# audit log.
