"""
marketplace_auth.profiles.rest

Profile store backed by the provider's REST (PostgREST) API.

Responsibilities:
- Look up and insert `user_profiles` rows with the service-role key.
- Translate unique-key conflicts into `DuplicateProfileError`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx

from marketplace_auth.provider.errors import ProviderError
from marketplace_auth.settings import Settings


def _encode(row: dict[str, Any]) -> dict[str, Any]:
    return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in row.items()}


class RestProfileStore:
    def __init__(self, *, settings: Settings, http: httpx.AsyncClient) -> None:
        self._settings = settings
        self._http = http
        self._path = f"/rest/v1/{settings.profiles_table}"

    def _headers(self, **extra: str) -> dict[str, str]:
        key = self._settings.supabase_service_role_key
        return {"apikey": key, "Authorization": f"Bearer {key}", **extra}

    async def get(self, user_id: str) -> dict[str, Any] | None:
        r = await self._http.get(
            self._path,
            params={"id": f"eq.{user_id}", "select": "*"},
            headers=self._headers(),
        )
        if r.is_error:
            raise ProviderError.from_response(r)
        rows = r.json()
        return rows[0] if rows else None

    async def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        r = await self._http.post(
            self._path,
            json=_encode(row),
            headers=self._headers(Prefer="return=representation"),
        )
        if r.is_error:
            # 23505 comes back as DuplicateProfileError.
            raise ProviderError.from_response(r)
        rows = r.json()
        return rows[0] if isinstance(rows, list) else rows

    async def ping(self) -> None:
        r = await self._http.get(
            self._path,
            params={"select": "id", "limit": "1"},
            headers=self._headers(),
        )
        if r.is_error:
            raise ProviderError.from_response(r)


# --- Module Notes -----------------------------------------------------------
# The service-role key bypasses row-level security so profile checks cannot fail
# on missing policies.
