"""
marketplace_auth.auth.service

Multi-strategy authentication orchestrator.

Responsibilities:
- Try strategies in priority order, skipping those whose circuit is open.
- Keep per-strategy circuit breaker bookkeeping.
- Ensure an application profile exists for every authenticated principal,
  creating it from provider signup metadata when missing (self-healing).
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

import structlog
from starlette.requests import HTTPConnection

from marketplace_auth.auth.circuit_breaker import CircuitBreaker
from marketplace_auth.auth.errors import (
    AuthErrorType,
    ErrorContext,
    create_error,
    from_provider_error,
)
from marketplace_auth.auth.models import (
    AuthResult,
    Principal,
    Profile,
    ProfileRecoveryResult,
    Role,
)
from marketplace_auth.auth.strategies import AuthStrategy, default_strategies
from marketplace_auth.auth.telemetry import AuthLogger
from marketplace_auth.observability.logging import get_logger
from marketplace_auth.profiles.store import ProfileStore
from marketplace_auth.provider.client import SupabaseAuthClient
from marketplace_auth.provider.errors import DuplicateProfileError, ProviderError
from marketplace_auth.settings import Settings

log = get_logger(__name__)

OPERATION = "multi-strategy-auth"
# Roles a user may pick for themselves at signup; anything else becomes a buyer.
SELF_SERVICE_ROLES = frozenset({Role.buyer, Role.seller})


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def _meta(metadata: Any, *keys: str) -> str:
    # Signup forms have sent both camelCase and snake_case keys over time.
    for key in keys:
        value = metadata.get(key)
        if value:
            return str(value)
    return ""


class AuthenticationService:
    def __init__(
        self,
        *,
        settings: Settings,
        provider: SupabaseAuthClient,
        profiles: ProfileStore,
        logger: AuthLogger,
        circuit_breaker: CircuitBreaker | None = None,
        strategies: Sequence[AuthStrategy] | None = None,
    ) -> None:
        self._settings = settings
        self._provider = provider
        self._profiles = profiles
        self._logger = logger
        self._breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.auth_breaker_failure_threshold,
            reset_timeout_s=settings.auth_breaker_reset_timeout_s,
        )
        chosen = strategies if strategies is not None else default_strategies(provider, settings=settings)
        self._strategies: list[AuthStrategy] = sorted(chosen, key=lambda s: s.priority, reverse=True)

    @property
    def strategies(self) -> list[AuthStrategy]:
        return list(self._strategies)

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._breaker

    async def authenticate_user(self, request: HTTPConnection | None = None) -> AuthResult:
        correlation_id = self._logger.generate_correlation_id()
        started = time.perf_counter()
        context = ErrorContext.from_request(request)

        with structlog.contextvars.bound_contextvars(correlation_id=correlation_id):
            self._logger.log_auth_attempt("unknown", OPERATION, correlation_id)

            missing = self._settings.missing_provider_settings()
            if missing:
                log.error("auth_provider_not_configured", missing=missing)
                error = create_error(
                    AuthErrorType.configuration_error,
                    "Authentication service configuration error",
                    "Authentication temporarily unavailable",
                    context,
                    {"missing": missing},
                    correlation_id=correlation_id,
                )
                self._logger.log_auth_failure(error)
                return AuthResult.failure(error=error)

            for strategy in self._strategies:
                if self._breaker.is_open(strategy.name):
                    log.warning("strategy_skipped", strategy=strategy.name, reason="circuit_open")
                    continue

                try:
                    result = await strategy.verify(request)
                except Exception as e:
                    log.warning("strategy_failed", strategy=strategy.name, error=repr(e))
                    self._breaker.record_failure(strategy.name)
                    self._logger.log_auth_failure(
                        from_provider_error(e, context, correlation_id=correlation_id)
                    )
                    continue

                if not (result.success and result.user):
                    log.debug("strategy_declined", strategy=strategy.name, detail=result.detail)
                    continue

                self._breaker.record_success(strategy.name)
                user = result.user

                try:
                    recovery = await self.ensure_profile_exists(user, correlation_id)
                except Exception as e:
                    log.warning("profile_resolution_failed", strategy=strategy.name, user_id=user.id, error=repr(e))
                    self._breaker.record_failure(strategy.name)
                    self._logger.log_auth_failure(
                        from_provider_error(
                            e,
                            replace(context, user_id=user.id),
                            correlation_id=correlation_id,
                        )
                    )
                    continue

                self._logger.log_performance_metric(
                    OPERATION,
                    _elapsed_ms(started),
                    True,
                    correlation_id,
                    {
                        "strategy": strategy.name,
                        "user_id": user.id,
                        "profile_created": recovery.created,
                    },
                )
                self._logger.log_auth_success(user.id, recovery.profile.id, correlation_id)
                return replace(result, profile=recovery.profile, strategy=strategy.name)

            self._logger.log_performance_metric(OPERATION, _elapsed_ms(started), False, correlation_id)
            return AuthResult.failure(
                error=create_error(
                    AuthErrorType.invalid_credentials,
                    "All authentication strategies failed",
                    "Please log in again",
                    context,
                    correlation_id=correlation_id,
                )
            )

    async def ensure_profile_exists(
        self, user: Principal, correlation_id: str | None = None
    ) -> ProfileRecoveryResult:
        """
        Return the user's profile, creating it from signup metadata if missing.

        Idempotent and race-safe: losing a concurrent insert re-reads the winner's row
        and reports `recovered=True`. Any other failure propagates.
        """

        profile = await self.get_profile(user.id)
        if profile is not None:
            return ProfileRecoveryResult(profile=profile, created=False, recovered=False)
        return await self._recover_or_create_profile(user, correlation_id)

    async def get_profile(self, user_id: str) -> Profile | None:
        row = await self._profiles.get(user_id)
        return Profile.from_row(row) if row else None

    async def _recover_or_create_profile(
        self, user: Principal, correlation_id: str | None
    ) -> ProfileRecoveryResult:
        log.info("profile_recovery_started", user_id=user.id, correlation_id=correlation_id)

        metadata: Any = user.user_metadata
        try:
            metadata = (await self._provider.admin_get_user(user.id)).user_metadata
        except ProviderError as e:
            # Fall back to whatever metadata came with the verified user.
            log.warning("profile_recovery_admin_lookup_failed", user_id=user.id, error=e.message)

        requested_role = _meta(metadata, "role")
        role = requested_role if requested_role in SELF_SERVICE_ROLES else Role.buyer.value
        email = user.email or ""
        now = datetime.now(tz=UTC)

        row: dict[str, Any] = {
            "id": user.id,
            "email": email,
            "full_name": _meta(metadata, "fullName", "full_name")
            or (email.split("@")[0] if email else "")
            or "New User",
            "role": role,
            "first_name": _meta(metadata, "firstName", "first_name"),
            "last_name": _meta(metadata, "lastName", "last_name"),
            "company_name": _meta(metadata, "companyName", "company_name"),
            "verification_status": "pending",
            "is_onboarding_completed": False,
            "onboarding_step_completed": 0,
            "created_at": now,
            "updated_at": now,
        }

        try:
            created = await self._profiles.insert(row)
        except DuplicateProfileError:
            log.info("profile_recovery_lost_race", user_id=user.id, correlation_id=correlation_id)
            existing = await self.get_profile(user.id)
            if existing is None:
                raise
            return ProfileRecoveryResult(profile=existing, created=False, recovered=True)

        log.info("profile_created", user_id=user.id, role=role, correlation_id=correlation_id)
        return ProfileRecoveryResult(profile=Profile.from_row(created), created=True, recovered=False)

    def circuit_breaker_status(self) -> dict[str, str]:
        return {s.name: self._breaker.get_state(s.name).value for s in self._strategies}


# --- Module Notes -----------------------------------------------------------
# Strategy order is static (priority), never latency-based: the most trusted
# credential type is tried first and the first success wins.
