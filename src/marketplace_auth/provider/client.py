"""
marketplace_auth.provider.client

HTTP client boundary for the hosted auth provider (GoTrue-compatible API).

Responsibilities:
- Verify access tokens and refresh sessions with the anonymous key.
- Read full user records through the admin API with the service-role key.
- Raise `ProviderError` for every non-2xx response.
"""

from __future__ import annotations

from typing import Any

import httpx

from marketplace_auth.auth.models import Principal
from marketplace_auth.provider.errors import ProviderError
from marketplace_auth.settings import Settings


class SupabaseAuthClient:
    """
    Thin async wrapper over `/auth/v1/*`.

    The shared `httpx.AsyncClient` must use the provider URL as `base_url`; timeouts
    are whatever that client is configured with.
    """

    def __init__(self, *, settings: Settings, http: httpx.AsyncClient) -> None:
        self._settings = settings
        self._http = http

    def _anon_headers(self, access_token: str | None = None) -> dict[str, str]:
        key = self._settings.supabase_anon_key
        return {"apikey": key, "Authorization": f"Bearer {access_token or key}"}

    def _service_headers(self) -> dict[str, str]:
        key = self._settings.supabase_service_role_key
        return {"apikey": key, "Authorization": f"Bearer {key}"}

    @staticmethod
    def _json(r: httpx.Response) -> Any:
        if r.is_error:
            raise ProviderError.from_response(r)
        return r.json()

    async def get_user(self, access_token: str) -> Principal:
        r = await self._http.get("/auth/v1/user", headers=self._anon_headers(access_token))
        return Principal.from_payload(self._json(r))

    async def refresh_session(self, refresh_token: str) -> dict[str, Any]:
        r = await self._http.post(
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            headers=self._anon_headers(),
            json={"refresh_token": refresh_token},
        )
        return self._json(r)

    async def admin_get_user(self, user_id: str) -> Principal:
        r = await self._http.get(f"/auth/v1/admin/users/{user_id}", headers=self._service_headers())
        return Principal.from_payload(self._json(r))

    async def health(self) -> dict[str, Any]:
        r = await self._http.get("/auth/v1/health", headers=self._anon_headers())
        return self._json(r)


# --- Module Notes -----------------------------------------------------------
# Service-role calls bypass row-level security and must never be driven by
# unauthenticated input other than an already-verified user id.
