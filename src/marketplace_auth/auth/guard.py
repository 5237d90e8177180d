"""
marketplace_auth.auth.guard

Page route guard (edge middleware).

Responsibilities:
- Decide, per requested page path, whether to let the request through or redirect
  (login, onboarding step, role dashboard).
- Run middleware authentication for guarded paths and write refreshed session
  cookies back onto the response.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from marketplace_auth.auth.middleware import DASHBOARDS, MiddlewareAuthenticationService, determine_redirect_url
from marketplace_auth.auth.models import Profile, Role
from marketplace_auth.observability.logging import get_logger
from marketplace_auth.provider.session import request_cookie_jar

log = get_logger(__name__)

LOGIN_PATH = "/auth/login"
AUTH_ENTRY_PATHS = ("/auth/login", "/auth/register")
ONBOARDING_PREFIX = "/onboarding"
APP_PREFIXES = tuple(DASHBOARDS.values())


@dataclass(frozen=True, slots=True)
class RouteDecision:
    allow: bool
    reason: str
    url: str | None = None


def _under(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")


def is_guarded_path(path: str) -> bool:
    if any(_under(path, p) for p in AUTH_ENTRY_PATHS):
        return True
    return _under(path, ONBOARDING_PREFIX) or any(_under(path, p) for p in APP_PREFIXES)


def _redirect(path: str, url: str, reason: str) -> RouteDecision:
    # Never bounce a request to the page it is already on.
    if url != "/" and _under(path, url):
        return RouteDecision(allow=True, reason=f"already_at_{reason}")
    return RouteDecision(allow=False, reason=reason, url=url)


def decide_route(path: str, profile: Profile | None) -> RouteDecision:
    """
    Routing policy for guarded pages. `profile` is None when the caller is not
    authenticated (or has no profile).
    """

    if not is_guarded_path(path):
        return RouteDecision(allow=True, reason="public_path")

    if any(_under(path, p) for p in AUTH_ENTRY_PATHS):
        if profile is None:
            return RouteDecision(allow=True, reason="anonymous_auth_page")
        target = determine_redirect_url(profile, path)
        return _redirect(path, target.url, target.reason)

    if profile is None:
        query = urlencode({"redirectTo": path})
        return RouteDecision(allow=False, reason="unauthenticated", url=f"{LOGIN_PATH}?{query}")

    target = determine_redirect_url(profile, path)

    if _under(path, ONBOARDING_PREFIX):
        if profile.is_onboarding_completed:
            if path.endswith("/success"):
                return RouteDecision(allow=True, reason="onboarding_success_page")
            return _redirect(path, target.url, "onboarding_already_completed")
        if not _under(path, f"{ONBOARDING_PREFIX}/{profile.role}"):
            return _redirect(path, target.url, "wrong_onboarding_role")
        return RouteDecision(allow=True, reason="onboarding_in_progress")

    # Dashboards: onboarding first, then the caller's own dashboard only.
    if not profile.is_onboarding_completed and profile.role != Role.admin:
        return _redirect(path, target.url, target.reason)
    own_dashboard = DASHBOARDS.get(profile.role)
    if own_dashboard is None or not _under(path, own_dashboard):
        return _redirect(path, target.url, "wrong_dashboard_for_role")
    return RouteDecision(allow=True, reason="dashboard_access")


class RouteGuardMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if not is_guarded_path(path):
            return await call_next(request)

        service: MiddlewareAuthenticationService = request.app.state.middleware_auth
        jar = request_cookie_jar(request)
        result = await service.authenticate_user_in_middleware(request, jar)

        profile = result.profile if result.success else None
        decision = decide_route(path, profile)
        if result.user is not None:
            service.log_onboarding_state(
                result.correlation_id,
                result.user.id,
                profile,
                "allow" if decision.allow else "redirect",
                path,
            )

        if decision.allow:
            response = await call_next(request)
        else:
            log.info(
                "route_redirect",
                correlation_id=result.correlation_id,
                url=decision.url,
                reason=decision.reason,
            )
            response = RedirectResponse(decision.url or LOGIN_PATH, status_code=307)

        jar.apply(response)
        return response


# --- Module Notes -----------------------------------------------------------
# API routes are not guarded here; they authenticate through `auth.deps` and
# answer 401/403 instead of redirecting.
