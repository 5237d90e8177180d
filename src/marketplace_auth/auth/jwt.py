"""
marketplace_auth.auth.jwt

Provider-compatible access token helpers for local development.

Responsibilities:
- Mint HS256 access tokens shaped like the provider's own (sub/email/role/aud/iss/exp)
  so a self-hosted provider stack accepts them.
- Decode and validate such tokens with strict claim requirements.

Note:
- Production tokens are always issued by the provider itself; these helpers are
  exposed only through the non-prod `/v1/dev/token` route.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt import InvalidTokenError

from marketplace_auth.settings import Settings


@dataclass(frozen=True, slots=True)
class JwtConfig:
    alg: str
    issuer: str
    audience: str
    secret: str

    @classmethod
    def from_settings(cls, settings: Settings) -> JwtConfig:
        return cls(
            alg=settings.jwt_alg,
            issuer=f"{settings.supabase_url.rstrip('/')}/auth/v1",
            audience=settings.jwt_audience,
            secret=settings.jwt_secret,
        )


class JwtValidationError(Exception):
    pass


def issue_access_token(
    *,
    cfg: JwtConfig,
    user_id: str,
    email: str | None = None,
    user_metadata: dict[str, Any] | None = None,
    ttl: timedelta = timedelta(hours=1),
) -> str:
    now = datetime.now(tz=UTC)
    payload: dict[str, Any] = {
        "iss": cfg.issuer,
        "aud": cfg.audience,
        "sub": user_id,
        "email": email,
        # Database role the provider's REST layer assumes for this token.
        "role": "authenticated",
        "user_metadata": user_metadata or {},
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.alg)


def decode_access_token(*, cfg: JwtConfig, token: str) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            cfg.secret,
            algorithms=[cfg.alg],
            issuer=cfg.issuer,
            audience=cfg.audience,
            options={"require": ["exp", "iat", "iss", "aud", "sub"]},
        )
    except InvalidTokenError as e:
        raise JwtValidationError(str(e)) from e


# --- Module Notes -----------------------------------------------------------
# Bearer tokens presented by callers are never trusted on signature alone; the
# bearer strategy always asks the provider.
