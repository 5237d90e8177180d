"""
marketplace_auth.api.routers.auth

Current-user endpoint.

Responsibilities:
- Rate-limit callers per client IP.
- Run the multi-strategy authentication and map the outcome to an HTTP status:
  429 rate limited, 503 misconfigured provider, 401 unauthenticated, 500 unexpected.
- Return the caller's identity, profile and the strategy that authenticated them.
- Write refreshed or cleared session cookies onto the response.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_401_UNAUTHORIZED,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from marketplace_auth.api.deps import rate_limiter_dep
from marketplace_auth.auth.deps import auth_service_dep
from marketplace_auth.auth.errors import AuthErrorType, ErrorContext, from_provider_error
from marketplace_auth.auth.models import AuthResult
from marketplace_auth.auth.rate_limit import RateLimiter, client_identifier, rate_limit_headers
from marketplace_auth.auth.service import AuthenticationService
from marketplace_auth.observability.logging import get_logger
from marketplace_auth.provider.session import request_cookie_jar

router = APIRouter(prefix="/v1/auth", tags=["auth"])
log = get_logger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


@router.get("/current-user")
async def current_user(
    request: Request,
    service: AuthenticationService = Depends(auth_service_dep),
    limiter: RateLimiter = Depends(rate_limiter_dep),
) -> JSONResponse:
    ip, _ = client_identifier(request)
    decision = limiter.check(ip, "auth-per-ip")
    limit_headers = rate_limit_headers(decision)

    if not decision.allowed:
        retry_after = decision.retry_after(time.time())
        return JSONResponse(
            {"error": decision.message, "type": "rate_limited", "retryAfter": retry_after},
            status_code=HTTP_429_TOO_MANY_REQUESTS,
            headers={**limit_headers, "Retry-After": str(retry_after)},
        )

    try:
        result = await service.authenticate_user(request)
    except Exception as e:
        log.exception("current_user_unexpected_error")
        error = from_provider_error(e, ErrorContext.from_request(request, method="GET"))
        return JSONResponse(
            {
                "error": error.user_message,
                "type": "internal_error",
                "correlationId": error.correlation_id,
            },
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        )

    response = _respond(result, limit_headers)
    request_cookie_jar(request).apply(response)
    return response


def _respond(result: AuthResult, limit_headers: dict[str, str]) -> JSONResponse:
    if not result.success or result.user is None:
        error_type = result.error.type if result.error else None
        if error_type == AuthErrorType.configuration_error:
            return JSONResponse(
                {
                    "error": "Authentication service temporarily unavailable",
                    "type": "service_unavailable",
                    "retryAfter": 30,
                },
                status_code=HTTP_503_SERVICE_UNAVAILABLE,
            )
        if error_type == AuthErrorType.rate_limited:
            return JSONResponse(
                {"error": result.error.user_message, "type": "rate_limited", "retryAfter": 60},
                status_code=HTTP_429_TOO_MANY_REQUESTS,
                headers={"Retry-After": "60"},
            )
        return JSONResponse(
            {"error": "Not authenticated", "type": "unauthorized"},
            status_code=HTTP_401_UNAUTHORIZED,
            headers=limit_headers,
        )

    user = result.user
    body = {
        "user": {
            "id": user.id,
            "email": user.email,
            "emailConfirmed": user.email_confirmed_at is not None,
            "lastSignIn": user.last_sign_in_at,
        },
        "profile": result.profile.to_dict() if result.profile else None,
        "metadata": {
            "strategy": result.strategy,
            "timestamp": datetime.now(tz=UTC).isoformat(),
        },
    }
    return JSONResponse(body, headers={**limit_headers, **SECURITY_HEADERS})


# --- Module Notes -----------------------------------------------------------
# Failure bodies never echo internal messages; clients get a stable `type` to
# branch on and, for 500s, a correlation id to quote in support requests.
