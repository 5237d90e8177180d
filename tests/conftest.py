"""
tests.conftest

Shared fixtures and in-process fakes.

Responsibilities:
- Provide test settings with dummy provider credentials.
- Provide a fake auth provider and an in-memory profile store with realistic
  async interleaving (so insert races can be exercised).
- Build Starlette requests without running an ASGI app.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import Any

import pytest
from starlette.requests import Request

from marketplace_auth.auth.models import Principal
from marketplace_auth.auth.telemetry import AuthLogger, BufferedTelemetrySink
from marketplace_auth.provider.errors import DuplicateProfileError, ProviderError
from marketplace_auth.settings import Settings

PROVIDER_URL = "https://abcd.supabase.co"
SESSION_COOKIE = "sb-abcd-auth-token"


class FakeProvider:
    """
    Duck-typed stand-in for `SupabaseAuthClient`.

    Unknown access tokens are rejected with 401, unknown refresh tokens with 400.
    """

    def __init__(self) -> None:
        self.users: dict[str, Principal] = {}
        self.admin_users: dict[str, Principal] = {}
        self.sessions: dict[str, dict[str, Any]] = {}
        self.get_user_error: Exception | None = None
        self.token_errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []

    def add_user(self, token: str, principal: Principal) -> Principal:
        self.users[token] = principal
        return principal

    async def get_user(self, access_token: str) -> Principal:
        self.calls.append(("get_user", access_token))
        await asyncio.sleep(0)
        if self.get_user_error is not None:
            raise self.get_user_error
        if access_token in self.token_errors:
            raise self.token_errors[access_token]
        user = self.users.get(access_token)
        if user is None:
            raise ProviderError("invalid JWT: unable to parse or verify signature", status=401)
        return user

    async def refresh_session(self, refresh_token: str) -> dict[str, Any]:
        self.calls.append(("refresh_session", refresh_token))
        session = self.sessions.get(refresh_token)
        if session is None:
            raise ProviderError("Invalid Refresh Token: Refresh Token Not Found", status=400)
        return session

    async def admin_get_user(self, user_id: str) -> Principal:
        self.calls.append(("admin_get_user", user_id))
        await asyncio.sleep(0)
        user = self.admin_users.get(user_id)
        if user is None:
            raise ProviderError("User not found", status=404)
        return user

    async def health(self) -> dict[str, Any]:
        return {"name": "GoTrue", "version": "test"}


class InMemoryProfileStore:
    """
    Reads yield to the event loop after looking up the row, so two concurrent
    callers can both observe "missing" before either inserts.
    """

    def __init__(self, rows: Mapping[str, dict[str, Any]] | None = None) -> None:
        self.rows: dict[str, dict[str, Any]] = {k: dict(v) for k, v in (rows or {}).items()}
        self.inserted: list[dict[str, Any]] = []
        self.get_error: Exception | None = None
        self.insert_error: Exception | None = None

    async def get(self, user_id: str) -> dict[str, Any] | None:
        if self.get_error is not None:
            raise self.get_error
        row = self.rows.get(user_id)
        await asyncio.sleep(0)
        return dict(row) if row else None

    async def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        if self.insert_error is not None:
            raise self.insert_error
        if row["id"] in self.rows:
            raise DuplicateProfileError()
        self.rows[row["id"]] = dict(row)
        self.inserted.append(dict(row))
        return dict(row)

    async def ping(self) -> None:
        return None


def profile_row(user_id: str = "user-1", **overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "id": user_id,
        "email": f"{user_id}@example.com",
        "full_name": "Test User",
        "role": "buyer",
        "first_name": "Test",
        "last_name": "User",
        "company_name": None,
        "verification_status": "pending",
        "is_onboarding_completed": True,
        "onboarding_step_completed": 2,
        "is_email_verified": True,
    }
    row.update(overrides)
    return row


@pytest.fixture
def settings() -> Settings:
    return Settings(
        env="test",
        supabase_url=PROVIDER_URL,
        supabase_anon_key="anon-key",
        supabase_service_role_key="service-role-key",
        log_json=True,
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def profiles() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture
def sink() -> BufferedTelemetrySink:
    return BufferedTelemetrySink()


@pytest.fixture
def auth_logger(sink: BufferedTelemetrySink) -> AuthLogger:
    return AuthLogger(sink)


@pytest.fixture
def make_request() -> Callable[..., Request]:
    def _make(
        path: str = "/",
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        cookies: Mapping[str, str] | None = None,
        client: tuple[str, int] = ("10.0.0.1", 51000),
    ) -> Request:
        raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
        if cookies:
            cookie_header = "; ".join(f"{k}={v}" for k, v in cookies.items())
            raw_headers.append((b"cookie", cookie_header.encode()))
        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": b"",
            "headers": raw_headers,
            "client": client,
            "server": ("testserver", 80),
        }
        return Request(scope)

    return _make


# --- Module Notes -----------------------------------------------------------
# Provider HTTP behavior itself is covered with httpx.MockTransport in
# test_provider_client.py; everything else talks to these fakes.
