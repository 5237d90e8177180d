"""
marketplace_auth.auth.errors

Authentication error taxonomy.

Responsibilities:
- Define the typed error record (`AuthError`) handed back to callers.
- Derive retryability and severity from the error type.
- Classify raw provider errors/exceptions into the taxonomy (best effort, never raises).
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx
from starlette.requests import HTTPConnection

from marketplace_auth.auth.rate_limit import client_identifier
from marketplace_auth.provider.errors import NO_ROWS_CODE, ProviderError


class AuthErrorType(enum.StrEnum):
    # User-facing
    invalid_credentials = "invalid_credentials"
    profile_not_found = "profile_not_found"
    account_locked = "account_locked"
    email_not_verified = "email_not_verified"
    insufficient_permissions = "insufficient_permissions"

    # System
    database_connection = "database_connection"
    supabase_api_failure = "supabase_api_failure"
    service_unavailable = "service_unavailable"
    configuration_error = "configuration_error"
    network_error = "network_error"

    # Recoverable
    temporary_failure = "temporary_failure"
    rate_limited = "rate_limited"
    timeout = "timeout"

    unknown_error = "unknown_error"


class Severity(enum.StrEnum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


_RETRYABLE: frozenset[AuthErrorType] = frozenset(
    {
        AuthErrorType.temporary_failure,
        AuthErrorType.network_error,
        AuthErrorType.database_connection,
        AuthErrorType.service_unavailable,
        AuthErrorType.timeout,
    }
)

_SEVERITY: dict[AuthErrorType, Severity] = {
    AuthErrorType.invalid_credentials: Severity.low,
    AuthErrorType.email_not_verified: Severity.low,
    AuthErrorType.profile_not_found: Severity.medium,
    AuthErrorType.rate_limited: Severity.medium,
    AuthErrorType.database_connection: Severity.high,
    AuthErrorType.supabase_api_failure: Severity.high,
    AuthErrorType.service_unavailable: Severity.high,
    AuthErrorType.configuration_error: Severity.critical,
}

GENERIC_USER_MESSAGE = "An unexpected error occurred. Please try again."


def is_retryable(error_type: AuthErrorType) -> bool:
    return error_type in _RETRYABLE


def severity_for(error_type: AuthErrorType) -> Severity:
    return _SEVERITY.get(error_type, Severity.medium)


def new_correlation_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True, slots=True)
class ErrorContext:
    endpoint: str = "unknown"
    method: str | None = None
    user_id: str | None = None
    user_agent: str | None = None
    ip: str | None = None

    @classmethod
    def from_request(
        cls,
        conn: HTTPConnection | None,
        *,
        method: str | None = None,
        user_id: str | None = None,
    ) -> ErrorContext:
        if conn is None:
            return cls(method=method, user_id=user_id)
        ip, user_agent = client_identifier(conn)
        return cls(
            endpoint=conn.url.path,
            method=method or conn.scope.get("method"),
            user_id=user_id,
            user_agent=user_agent,
            ip=ip,
        )


@dataclass(frozen=True, slots=True)
class AuthError:
    """
    Immutable diagnostic record for one failed authentication step.

    `message` is internal; `user_message` is safe to show to end users.
    """

    type: AuthErrorType
    message: str
    user_message: str
    correlation_id: str
    timestamp: datetime
    context: ErrorContext
    retryable: bool
    severity: Severity
    details: Any = field(default=None, compare=False)

    def to_dict(self, *, include_details: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type.value,
            "message": self.message,
            "userMessage": self.user_message,
            "correlationId": self.correlation_id,
            "timestamp": self.timestamp.isoformat(),
            "context": {
                "endpoint": self.context.endpoint,
                "method": self.context.method,
                "userId": self.context.user_id,
                "userAgent": self.context.user_agent,
                "ip": self.context.ip,
            },
            "retryable": self.retryable,
            "severity": self.severity.value,
        }
        if include_details and self.details is not None:
            data["details"] = repr(self.details)
        return data


def create_error(
    error_type: AuthErrorType,
    message: str,
    user_message: str,
    context: ErrorContext | Mapping[str, Any] | None = None,
    details: Any = None,
    *,
    correlation_id: str | None = None,
) -> AuthError:
    if context is None:
        ctx = ErrorContext()
    elif isinstance(context, ErrorContext):
        ctx = context
    else:
        ctx = ErrorContext(**{k: v for k, v in context.items() if v is not None})

    return AuthError(
        type=error_type,
        message=message,
        user_message=user_message,
        correlation_id=correlation_id or new_correlation_id(),
        timestamp=datetime.now(tz=UTC),
        context=ctx,
        retryable=is_retryable(error_type),
        severity=severity_for(error_type),
        details=details,
    )


# Ordered: first match wins.
_CREDENTIAL_RULES: tuple[tuple[tuple[str, ...], AuthErrorType, str], ...] = (
    (
        ("Invalid login credentials",),
        AuthErrorType.invalid_credentials,
        "Invalid email or password. Please check your credentials and try again.",
    ),
    (
        ("Email not confirmed",),
        AuthErrorType.email_not_verified,
        "Please verify your email address before logging in.",
    ),
    (
        ("User not found",),
        AuthErrorType.profile_not_found,
        "Account not found. Please check your email or sign up for a new account.",
    ),
)

_TRANSIENT_RULES: tuple[tuple[tuple[str, ...], AuthErrorType, str], ...] = (
    (
        ("rate limit",),
        AuthErrorType.rate_limited,
        "Too many requests. Please wait a moment and try again.",
    ),
    (
        ("network", "connection"),
        AuthErrorType.network_error,
        "Connection error. Please check your internet connection and try again.",
    ),
    (
        ("not configured",),
        AuthErrorType.configuration_error,
        "Authentication service temporarily unavailable. Please try again in a moment.",
    ),
)


def _error_fields(error: Any) -> tuple[str | None, str | None]:
    if error is None:
        return None, None
    if isinstance(error, str):
        return error, None
    if isinstance(error, Mapping):
        message = error.get("message")
        code = error.get("code")
    else:
        message = getattr(error, "message", None)
        if message is None and isinstance(error, BaseException):
            message = str(error) or type(error).__name__
        code = getattr(error, "code", None)
    return (
        str(message) if message is not None else None,
        str(code) if code is not None else None,
    )


def _match_message(
    message: str | None, rules: tuple[tuple[tuple[str, ...], AuthErrorType, str], ...]
) -> tuple[AuthErrorType, str] | None:
    if not message:
        return None
    for needles, error_type, user_message in rules:
        if any(needle in message for needle in needles):
            return error_type, user_message
    return None


def classify_provider_error(error: Any) -> tuple[AuthErrorType, str]:
    """
    Map a raw provider error (exception, dict or string) to (type, user message).

    Unrecognized errors fall through to `unknown_error`.
    """

    message, code = _error_fields(error)

    matched = _match_message(message, _CREDENTIAL_RULES)
    if matched is not None:
        return matched
    if code == NO_ROWS_CODE:
        return AuthErrorType.profile_not_found, "User profile not found. Please contact support."
    if isinstance(error, httpx.TimeoutException):
        return AuthErrorType.timeout, "The request timed out. Please try again."
    if isinstance(error, httpx.TransportError):
        return (
            AuthErrorType.network_error,
            "Connection error. Please check your internet connection and try again.",
        )

    matched = _match_message(message, _TRANSIENT_RULES)
    if matched is not None:
        return matched

    if isinstance(error, ProviderError) and error.status is not None:
        if error.status == 429:
            return AuthErrorType.rate_limited, "Too many requests. Please wait a moment and try again."
        if error.status == 503:
            return (
                AuthErrorType.service_unavailable,
                "Authentication service temporarily unavailable. Please try again in a moment.",
            )
        if error.is_server_error:
            return AuthErrorType.supabase_api_failure, GENERIC_USER_MESSAGE

    return AuthErrorType.unknown_error, GENERIC_USER_MESSAGE


def from_provider_error(
    error: Any,
    context: ErrorContext | Mapping[str, Any] | None = None,
    *,
    correlation_id: str | None = None,
) -> AuthError:
    error_type, user_message = classify_provider_error(error)
    message, _ = _error_fields(error)
    return create_error(
        error_type,
        message or "Unknown error",
        user_message,
        context,
        error,
        correlation_id=correlation_id,
    )


# --- Module Notes -----------------------------------------------------------
# Provider error strings change without notice; extend the rule tables (or add a
# structured check in `classify_provider_error`) rather than matching on messages at call sites.
