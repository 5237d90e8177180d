"""
marketplace_auth.auth.middleware

Request-scoped authentication for the edge/middleware layer.

Responsibilities:
- Resolve the caller from the session cookie (writing refreshed tokens back through the jar).
- Load the detailed profile (role, onboarding, verification) with the elevated store.
- Fall back to the general `AuthenticationService` for bearer-token callers.
- Compute onboarding/role based redirect targets (`determine_redirect_url`).

Nothing in here raises to the caller: every failure becomes a `MiddlewareAuthResult`.
"""

from __future__ import annotations

import time

import httpx
import structlog
from starlette.requests import HTTPConnection

from marketplace_auth.auth.errors import (
    AuthErrorType,
    ErrorContext,
    create_error,
    from_provider_error,
)
from marketplace_auth.auth.models import (
    MiddlewareAuthResult,
    Profile,
    RedirectDecision,
    Role,
)
from marketplace_auth.auth.service import AuthenticationService
from marketplace_auth.auth.telemetry import AuthLogger
from marketplace_auth.observability.logging import get_logger
from marketplace_auth.profiles.store import ProfileStore
from marketplace_auth.provider.client import SupabaseAuthClient
from marketplace_auth.provider.errors import ProviderError
from marketplace_auth.provider.session import CookieJar, SessionCookieClient
from marketplace_auth.settings import Settings

log = get_logger(__name__)

OPERATION = "middleware-auth"

ONBOARDING_TOTAL_STEPS: dict[str, int] = {
    Role.seller: 5,
    Role.buyer: 2,
}

DASHBOARDS: dict[str, str] = {
    Role.seller: "/seller-dashboard",
    Role.buyer: "/dashboard",
    Role.admin: "/admin",
}


def determine_redirect_url(profile: Profile, requested_path: str = "/") -> RedirectDecision:
    """
    Where a signed-in user belongs, given their role and onboarding progress.

    Pure: no I/O, no logging. Unknown roles fall back to "/".
    """

    role = profile.role

    if not profile.is_onboarding_completed:
        if role == Role.admin:
            # Admins have no onboarding flow.
            return RedirectDecision(url=DASHBOARDS[Role.admin], reason="admin_incomplete_onboarding_default")

        total_steps = ONBOARDING_TOTAL_STEPS.get(role)
        if total_steps is not None:
            next_step = max(profile.onboarding_step_completed or 0, 0) + 1
            reason = f"incomplete_onboarding_step_{next_step}"
            if next_step > total_steps:
                return RedirectDecision(url=DASHBOARDS[role], reason=reason)
            return RedirectDecision(url=f"/onboarding/{role}/{next_step}", reason=reason)

    if role == Role.seller:
        return RedirectDecision(url=DASHBOARDS[Role.seller], reason="completed_onboarding_seller")
    if role == Role.buyer:
        return RedirectDecision(url=DASHBOARDS[Role.buyer], reason="completed_onboarding_buyer")
    if role == Role.admin:
        return RedirectDecision(url=DASHBOARDS[Role.admin], reason="admin_access")

    return RedirectDecision(url="/", reason="fallback_unknown_role_or_state")


class MiddlewareAuthenticationService:
    def __init__(
        self,
        *,
        settings: Settings,
        provider: SupabaseAuthClient,
        profiles: ProfileStore,
        auth_service: AuthenticationService,
        logger: AuthLogger,
    ) -> None:
        self._settings = settings
        self._provider = provider
        self._profiles = profiles
        self._auth_service = auth_service
        self._logger = logger

    async def authenticate_user_in_middleware(
        self, request: HTTPConnection, cookies: CookieJar
    ) -> MiddlewareAuthResult:
        started = time.perf_counter()
        correlation_id = self._logger.generate_correlation_id()
        pathname = request.url.path
        context = ErrorContext.from_request(request, method="MIDDLEWARE")

        def elapsed() -> float:
            return (time.perf_counter() - started) * 1000

        with structlog.contextvars.bound_contextvars(correlation_id=correlation_id):
            self._logger.log_auth_attempt("middleware", "cookie-session", correlation_id)

            try:
                session = SessionCookieClient(
                    provider=self._provider,
                    jar=cookies,
                    cookie_name=self._settings.resolved_session_cookie_name,
                    max_age=self._settings.session_cookie_max_age,
                )
                try:
                    user = await session.get_user()
                except ProviderError as e:
                    log.info("middleware_cookie_auth_error", error=e.message, status=e.status)
                    user = None
                except httpx.HTTPError as e:
                    log.warning("middleware_cookie_auth_unreachable", error=repr(e))
                    user = None

                if user is not None:
                    profile = await self._fetch_detailed_profile(user.id)
                    if profile is None:
                        log.warning("middleware_profile_missing", user_id=user.id)
                        error = create_error(
                            AuthErrorType.profile_not_found,
                            "User profile not found after cookie authentication.",
                            "Please try again or contact support.",
                            ErrorContext(
                                endpoint=pathname,
                                method="MIDDLEWARE",
                                user_id=user.id,
                                user_agent=context.user_agent,
                                ip=context.ip,
                            ),
                            correlation_id=correlation_id,
                        )
                        self._logger.log_auth_failure(error)
                        self._logger.log_performance_metric(
                            OPERATION,
                            elapsed(),
                            False,
                            correlation_id,
                            {"pathname": pathname, "reason": "profile_not_found", "user_id": user.id},
                        )
                        return MiddlewareAuthResult(
                            success=False,
                            correlation_id=correlation_id,
                            execution_time_ms=elapsed(),
                            user=user,
                            error=error,
                            strategy="cookie-session-profile-missing",
                        )

                    self._logger.log_auth_success(user.id, profile.id, correlation_id)
                    self._logger.log_performance_metric(
                        OPERATION,
                        elapsed(),
                        True,
                        correlation_id,
                        {"strategy": "cookie-session", "pathname": pathname, "user_id": user.id, "role": profile.role},
                    )
                    return MiddlewareAuthResult(
                        success=True,
                        correlation_id=correlation_id,
                        execution_time_ms=elapsed(),
                        user=user,
                        profile=profile,
                        strategy="cookie-session",
                    )

                log.info("middleware_no_cookie_session", pathname=pathname)
                fallback = await self._auth_service.authenticate_user(request)
                if fallback.success and fallback.user is not None:
                    self._logger.log_performance_metric(
                        OPERATION,
                        elapsed(),
                        True,
                        correlation_id,
                        {"strategy": fallback.strategy, "pathname": pathname, "user_id": fallback.user.id},
                    )
                    return MiddlewareAuthResult(
                        success=True,
                        correlation_id=correlation_id,
                        execution_time_ms=elapsed(),
                        user=fallback.user,
                        profile=fallback.profile,
                        strategy=f"fallback-{fallback.strategy}",
                    )

                error = fallback.error or create_error(
                    AuthErrorType.invalid_credentials,
                    "No valid authentication found",
                    "Please log in again.",
                    context,
                    correlation_id=correlation_id,
                )
                self._logger.log_auth_failure(error)
                self._logger.log_performance_metric(
                    OPERATION,
                    elapsed(),
                    False,
                    correlation_id,
                    {"pathname": pathname, "reason": "no_valid_auth"},
                )
                return MiddlewareAuthResult(
                    success=False,
                    correlation_id=correlation_id,
                    execution_time_ms=elapsed(),
                    error=error,
                    strategy="no-auth",
                )

            except Exception as e:
                log.exception("middleware_auth_unexpected_error", pathname=pathname)
                error = from_provider_error(e, context, correlation_id=correlation_id)
                self._logger.log_auth_failure(error)
                self._logger.log_performance_metric(
                    OPERATION,
                    elapsed(),
                    False,
                    correlation_id,
                    {"pathname": pathname, "error": repr(e)},
                )
                return MiddlewareAuthResult(
                    success=False,
                    correlation_id=correlation_id,
                    execution_time_ms=elapsed(),
                    error=error,
                    strategy="exception",
                )

    async def _fetch_detailed_profile(self, user_id: str) -> Profile | None:
        row = await self._profiles.get(user_id)
        if not row:
            return None
        return Profile.from_row(row)

    def determine_redirect_url(
        self, profile: Profile, requested_path: str, correlation_id: str | None = None
    ) -> RedirectDecision:
        decision = determine_redirect_url(profile, requested_path)
        log.info(
            "redirect_determined",
            correlation_id=correlation_id,
            requested_path=requested_path,
            role=profile.role,
            onboarding_completed=profile.is_onboarding_completed,
            onboarding_step=profile.onboarding_step_completed,
            url=decision.url,
            reason=decision.reason,
        )
        if decision.reason == "fallback_unknown_role_or_state":
            log.warning("redirect_fallback", correlation_id=correlation_id, user_id=profile.id)
        return decision

    def log_onboarding_state(
        self,
        correlation_id: str,
        user_id: str,
        profile: Profile | None,
        action: str,
        requested_path: str,
    ) -> None:
        if profile is None:
            log.info(
                "onboarding_state",
                correlation_id=correlation_id,
                user_id=user_id,
                action=action,
                requested_path=requested_path,
                profile=None,
            )
            return

        log.info(
            "onboarding_state",
            correlation_id=correlation_id,
            user_id=user_id,
            action=action,
            requested_path=requested_path,
            role=profile.role,
            onboarding_completed=profile.is_onboarding_completed,
            onboarding_step=profile.onboarding_step_completed,
        )
        self._logger.log_performance_metric(
            "onboarding-state-check",
            0,
            True,
            correlation_id,
            {
                "user_id": user_id,
                "role": profile.role,
                "is_onboarding_completed": profile.is_onboarding_completed,
                "onboarding_step": profile.onboarding_step_completed,
                "action": action,
                "requested_path": requested_path,
            },
        )


# --- Module Notes -----------------------------------------------------------
# The profile lookup goes through the elevated store on purpose: middleware must
# not be blocked by row-level security gaps.
