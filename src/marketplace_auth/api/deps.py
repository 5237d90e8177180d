"""
marketplace_auth.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Encapsulate app.state access patterns (telemetry, profile store, provider, rate limiter).
"""

from __future__ import annotations

from fastapi import Request

from marketplace_auth.auth.rate_limit import RateLimiter
from marketplace_auth.auth.telemetry import BufferedTelemetrySink
from marketplace_auth.profiles.store import ProfileStore
from marketplace_auth.provider.client import SupabaseAuthClient
from marketplace_auth.settings import Settings


def settings_dep(request: Request) -> Settings:
    # The app's own settings, not a fresh env read: tests build apps with explicit settings.
    return request.app.state.settings  # type: ignore[attr-defined]


def telemetry_dep(request: Request) -> BufferedTelemetrySink:
    return request.app.state.telemetry  # type: ignore[attr-defined]


def profiles_dep(request: Request) -> ProfileStore:
    return request.app.state.profiles  # type: ignore[attr-defined]


def provider_dep(request: Request) -> SupabaseAuthClient:
    return request.app.state.provider  # type: ignore[attr-defined]


def rate_limiter_dep(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter  # type: ignore[attr-defined]


# --- Module Notes -----------------------------------------------------------
# Everything here is created once in `api.app.create_app`.
