"""
marketplace_auth.auth.models

Auth domain models.

Responsibilities:
- `Principal`: identity record issued by the auth provider (read-only here).
- `Profile`: application-owned record keyed 1:1 by `Principal.id`.
- Result types returned by strategies and both authentication services.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from marketplace_auth.auth.errors import AuthError


class Role(enum.StrEnum):
    buyer = "buyer"
    seller = "seller"
    admin = "admin"


def _parse_ts(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity as returned by the provider's user endpoints.
    """

    id: str
    email: str | None = None
    user_metadata: Mapping[str, Any] = field(default_factory=dict)
    app_metadata: Mapping[str, Any] = field(default_factory=dict)
    email_confirmed_at: str | None = None
    last_sign_in_at: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Principal:
        # Admin endpoints wrap the record as {"user": {...}}; the user endpoint does not.
        data = payload.get("user", payload) if "id" not in payload else payload
        return cls(
            id=str(data["id"]),
            email=data.get("email"),
            user_metadata=dict(data.get("user_metadata") or {}),
            app_metadata=dict(data.get("app_metadata") or {}),
            email_confirmed_at=data.get("email_confirmed_at"),
            last_sign_in_at=data.get("last_sign_in_at"),
        )


@dataclass(frozen=True, slots=True)
class Profile:
    id: str
    email: str
    role: str
    verification_status: str = "pending"
    is_onboarding_completed: bool = False
    onboarding_step_completed: int | None = None
    full_name: str = ""
    first_name: str = ""
    last_name: str = ""
    company_name: str | None = None
    is_email_verified: bool = False
    email_verified_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Profile:
        # Normalize nullable columns so redirect logic never sees None flags.
        return cls(
            id=str(row["id"]),
            email=row.get("email") or "",
            role=row.get("role") or "",
            verification_status=row.get("verification_status") or "anonymous",
            is_onboarding_completed=bool(row.get("is_onboarding_completed") or False),
            onboarding_step_completed=row.get("onboarding_step_completed"),
            full_name=row.get("full_name") or "",
            first_name=row.get("first_name") or "",
            last_name=row.get("last_name") or "",
            company_name=row.get("company_name") or None,
            is_email_verified=bool(row.get("is_email_verified") or False),
            email_verified_at=_parse_ts(row.get("email_verified_at")),
            created_at=_parse_ts(row.get("created_at")),
            updated_at=_parse_ts(row.get("updated_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "verification_status": self.verification_status,
            "is_onboarding_completed": self.is_onboarding_completed,
            "onboarding_step_completed": self.onboarding_step_completed,
            "full_name": self.full_name,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "company_name": self.company_name,
            "is_email_verified": self.is_email_verified,
            "email_verified_at": self.email_verified_at.isoformat() if self.email_verified_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True, slots=True)
class AuthResult:
    """
    Uniform outcome of a strategy or of a full authentication attempt.

    `detail` carries a strategy's short failure reason; `error` is only set by the
    orchestrator when the whole attempt fails.
    """

    success: bool
    user: Principal | None = None
    profile: Profile | None = None
    error: AuthError | None = None
    strategy: str | None = None
    detail: str | None = None

    def __post_init__(self) -> None:
        if self.success and self.user is None:
            raise ValueError("successful AuthResult requires a user")

    @classmethod
    def ok(cls, user: Principal) -> AuthResult:
        return cls(success=True, user=user)

    @classmethod
    def failure(cls, detail: str | None = None, *, error: AuthError | None = None) -> AuthResult:
        return cls(success=False, detail=detail, error=error)


@dataclass(frozen=True, slots=True)
class ProfileRecoveryResult:
    profile: Profile
    created: bool
    recovered: bool


@dataclass(frozen=True, slots=True)
class MiddlewareAuthResult:
    success: bool
    correlation_id: str
    execution_time_ms: float
    user: Principal | None = None
    profile: Profile | None = None
    error: AuthError | None = None
    strategy: str | None = None


@dataclass(frozen=True, slots=True)
class RedirectDecision:
    url: str
    reason: str


# --- Module Notes -----------------------------------------------------------
# `Profile.role` stays a plain string so unknown roles coming from the database are
# representable; compare against `Role` members (StrEnum) when branching.
