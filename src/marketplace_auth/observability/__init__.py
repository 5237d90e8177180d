"""
marketplace_auth.observability

Observability package.

Responsibilities:
- Structured logging configuration (structlog).
- Request context propagation for consistent log enrichment.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Auth-specific telemetry (error/metric buffering) lives in `marketplace_auth.auth.telemetry`.
