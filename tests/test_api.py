"""
tests.test_api

End-to-end API tests through `httpx.ASGITransport`.

Responsibilities:
- Ensure the app boots and serves health/readiness endpoints in test mode.
- Map authentication outcomes to HTTP statuses on the current-user endpoint.
- Guard admin routes by role and hide dev routes in prod.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any

import httpx
import pytest
from conftest import PROVIDER_URL, SESSION_COOKIE, InMemoryProfileStore, profile_row

from marketplace_auth.api.app import create_app
from marketplace_auth.provider.session import decode_session_cookie, encode_session_cookie
from marketplace_auth.settings import Settings

USERS: dict[str, dict[str, Any]] = {
    "buyer-token": {"id": "buyer-1", "email": "buyer@example.com", "email_confirmed_at": "2024-01-01T00:00:00Z"},
    "admin-token": {"id": "admin-1", "email": "admin@example.com"},
    "new-token": {"id": "new-1", "email": "new@example.com", "user_metadata": {"role": "seller"}},
}

# Refresh tokens are single use: redeeming one removes it.
REFRESH_SESSIONS: dict[str, dict[str, Any]] = {}


def provider_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/auth/v1/health":
        return httpx.Response(200, json={"name": "GoTrue"})
    if path == "/auth/v1/user":
        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        user = USERS.get(token)
        if user is None:
            return httpx.Response(401, json={"msg": "invalid JWT"})
        return httpx.Response(200, json=user)
    if path == "/auth/v1/token":
        session = REFRESH_SESSIONS.pop(json.loads(request.content)["refresh_token"], None)
        if session is None:
            return httpx.Response(400, json={"msg": "Invalid Refresh Token: Already Used"})
        return httpx.Response(200, json=session)
    if path.startswith("/auth/v1/admin/users/"):
        user_id = path.rsplit("/", 1)[-1]
        for user in USERS.values():
            if user["id"] == user_id:
                return httpx.Response(200, json=user)
        return httpx.Response(404, json={"msg": "User not found"})
    return httpx.Response(404, json={"message": "no route"})


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "env": "test",
        "supabase_url": PROVIDER_URL,
        "supabase_anon_key": "anon-key",
        "supabase_service_role_key": "service-role-key",
    }
    values.update(overrides)
    return Settings(**values)


@asynccontextmanager
async def running_app(settings: Settings, profiles: InMemoryProfileStore | None = None):
    profiles = profiles if profiles is not None else InMemoryProfileStore()
    provider_http = httpx.AsyncClient(transport=httpx.MockTransport(provider_handler), base_url=PROVIDER_URL)
    app = create_app(settings=settings, http=provider_http, profiles=profiles)

    # httpx ASGITransport does not manage lifespan automatically; do it explicitly.
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    await provider_http.aclose()


@pytest.mark.asyncio
async def test_health_endpoints() -> None:
    async with running_app(_settings()) as client:
        r = await client.get("/healthz")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"
        assert r.headers["x-request-id"]

        r = await client.get("/readyz")
        assert r.status_code == 200
        assert r.json()["status"] == "ready"


@pytest.mark.asyncio
async def test_current_user_unauthenticated() -> None:
    async with running_app(_settings()) as client:
        r = await client.get("/v1/auth/current-user")

    assert r.status_code == 401
    assert r.json() == {"error": "Not authenticated", "type": "unauthorized"}
    assert r.headers["x-ratelimit-remaining"] == "24"


@pytest.mark.asyncio
async def test_current_user_with_bearer_token() -> None:
    profiles = InMemoryProfileStore({"buyer-1": profile_row("buyer-1")})
    async with running_app(_settings(), profiles) as client:
        r = await client.get("/v1/auth/current-user", headers={"Authorization": "Bearer buyer-token"})

    assert r.status_code == 200
    body = r.json()
    assert body["user"] == {
        "id": "buyer-1",
        "email": "buyer@example.com",
        "emailConfirmed": True,
        "lastSignIn": None,
    }
    assert body["profile"]["role"] == "buyer"
    assert body["metadata"]["strategy"] == "bearer-token"
    assert r.headers["x-frame-options"] == "DENY"
    assert r.headers["x-content-type-options"] == "nosniff"


@pytest.mark.asyncio
async def test_current_user_self_heals_missing_profile() -> None:
    profiles = InMemoryProfileStore()
    async with running_app(_settings(), profiles) as client:
        r = await client.get("/v1/auth/current-user", headers={"Authorization": "Bearer new-token"})

    assert r.status_code == 200
    assert r.json()["profile"]["role"] == "seller"
    assert r.json()["profile"]["verification_status"] == "pending"
    assert list(profiles.rows) == ["new-1"]


@pytest.mark.asyncio
async def test_current_user_writes_refreshed_session_cookie(monkeypatch) -> None:
    monkeypatch.setitem(REFRESH_SESSIONS, "r-old", {"access_token": "buyer-token", "refresh_token": "r-new"})
    profiles = InMemoryProfileStore({"buyer-1": profile_row("buyer-1")})
    stale = encode_session_cookie({"access_token": "expired-token", "refresh_token": "r-old"})

    async with running_app(_settings(), profiles) as client:
        r = await client.get("/v1/auth/current-user", headers={"Cookie": f"{SESSION_COOKIE}={stale}"})
        assert r.status_code == 200
        assert r.json()["metadata"]["strategy"] == "cookie-session"

        written = [c for c in r.headers.get_list("set-cookie") if c.startswith(f"{SESSION_COOKIE}=")]
        assert len(written) == 1
        rotated = written[0].split(";", 1)[0].partition("=")[2]
        assert decode_session_cookie(rotated) == {"access_token": "buyer-token", "refresh_token": "r-new"}

        # The next request carries the rotated cookie, not the spent refresh token.
        r = await client.get("/v1/auth/current-user", headers={"Cookie": f"{SESSION_COOKIE}={rotated}"})
        assert r.status_code == 200
        assert r.json()["user"]["id"] == "buyer-1"


@pytest.mark.asyncio
async def test_current_user_rate_limited() -> None:
    async with running_app(_settings(auth_rate_limit_per_ip=2)) as client:
        for _ in range(2):
            assert (await client.get("/v1/auth/current-user")).status_code == 401
        r = await client.get("/v1/auth/current-user")

    assert r.status_code == 429
    assert r.json()["type"] == "rate_limited"
    assert int(r.headers["retry-after"]) > 0


@pytest.mark.asyncio
async def test_current_user_without_provider_configuration() -> None:
    async with running_app(Settings(env="test")) as client:
        r = await client.get("/v1/auth/current-user", headers={"Authorization": "Bearer buyer-token"})

    assert r.status_code == 503
    assert r.json()["type"] == "service_unavailable"


@pytest.mark.asyncio
async def test_admin_routes_require_admin_role() -> None:
    profiles = InMemoryProfileStore(
        {
            "buyer-1": profile_row("buyer-1"),
            "admin-1": profile_row("admin-1", role="admin", is_onboarding_completed=False),
        }
    )
    async with running_app(_settings(), profiles) as client:
        r = await client.get("/v1/admin/circuit-breakers")
        assert r.status_code == 401

        r = await client.get("/v1/admin/circuit-breakers", headers={"Authorization": "Bearer buyer-token"})
        assert r.status_code == 403

        r = await client.get("/v1/admin/circuit-breakers", headers={"Authorization": "Bearer admin-token"})
        assert r.status_code == 200
        breakers = r.json()["circuitBreakers"]
        assert [b["name"] for b in breakers] == ["bearer-token", "cookie-session", "service-role"]
        assert {b["state"] for b in breakers} == {"closed"}

        r = await client.get("/v1/admin/auth-telemetry", headers={"Authorization": "Bearer admin-token"})
        assert r.status_code == 200
        assert any(m["success"] for m in r.json()["metrics"])


@pytest.mark.asyncio
async def test_auth_health_report() -> None:
    profiles = InMemoryProfileStore({"buyer-1": profile_row("buyer-1")})
    async with running_app(_settings(), profiles) as client:
        await client.get("/v1/auth/current-user", headers={"Authorization": "Bearer buyer-token"})
        r = await client.get("/v1/health/auth")

    assert r.status_code == 200
    body = r.json()
    assert body["services"]["database"]["status"] == "healthy"
    assert body["services"]["provider"]["status"] == "healthy"
    assert body["metrics"]["activeUsers"] == 1
    assert body["metrics"]["successRate"] == 100
    assert body["status"] == "healthy"


@pytest.mark.asyncio
async def test_auth_health_unconfigured_provider() -> None:
    async with running_app(Settings(env="test")) as client:
        r = await client.get("/v1/health/auth")

    assert r.status_code == 200
    assert r.json()["status"] == "unhealthy"
    assert "supabase_url" in r.json()["services"]["provider"]["details"]["missing"]


@pytest.mark.asyncio
async def test_dev_token_only_outside_prod() -> None:
    body = {"user_id": "u1", "email": "u1@example.com"}
    async with running_app(_settings()) as client:
        r = await client.post("/v1/dev/token", json=body)
        assert r.status_code == 200
        assert r.json()["token_type"] == "bearer"

    async with running_app(_settings(env="prod")) as client:
        r = await client.post("/v1/dev/token", json=body)
        assert r.status_code == 404


@pytest.mark.asyncio
async def test_guarded_page_redirects_to_login() -> None:
    async with running_app(_settings()) as client:
        r = await client.get("/seller-dashboard")

    assert r.status_code == 307
    assert r.headers["location"] == "/auth/login?redirectTo=%2Fseller-dashboard"


# --- Module Notes -----------------------------------------------------------
# The provider is an httpx.MockTransport; profile storage is in memory. SQL-backed
# storage is covered separately in test_sql_profile_store.py.
