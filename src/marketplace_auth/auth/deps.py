"""
marketplace_auth.auth.deps

FastAPI dependency functions for authentication and authorization.

Responsibilities:
- Run the multi-strategy authentication once per request.
- Turn failed authentication into 401 and missing roles into 403.
- Carry refreshed session cookies onto the route's response.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, Response
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN

from marketplace_auth.auth.models import AuthResult, Role
from marketplace_auth.auth.service import AuthenticationService
from marketplace_auth.provider.session import request_cookie_jar


def auth_service_dep(request: Request) -> AuthenticationService:
    # Built once in `api.app.create_app`.
    return request.app.state.auth_service  # type: ignore[attr-defined]


async def get_auth_result(
    request: Request,
    response: Response,
    service: AuthenticationService = Depends(auth_service_dep),
) -> AuthResult:
    result = await service.authenticate_user(request)
    # FastAPI copies these headers onto the route's response.
    request_cookie_jar(request).apply(response)
    return result


def get_authenticated(result: AuthResult = Depends(get_auth_result)) -> AuthResult:
    if not result.success or result.user is None or result.profile is None:
        detail = result.error.user_message if result.error else "Not authenticated"
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail=detail)
    return result


def require_roles(*required: str):
    allowed = frozenset(required)

    def _dep(result: AuthResult = Depends(get_authenticated)) -> AuthResult:
        role = result.profile.role if result.profile else None
        # Admins pass every role check.
        if role == Role.admin or role in allowed:
            return result
        raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    return _dep


# --- Module Notes -----------------------------------------------------------
# `/v1/auth/current-user` calls the service directly because it maps error types
# to specific status codes (429/503) instead of a blanket 401.
