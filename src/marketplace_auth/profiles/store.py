"""
marketplace_auth.profiles.store

Profile store protocol.

Responsibilities:
- Define the elevated (RLS-bypassing) profile lookup/insert contract.
"""

from __future__ import annotations

from typing import Any, Protocol


class ProfileStore(Protocol):
    """
    Rows are plain dicts keyed by column name.

    `insert` raises `DuplicateProfileError` when a row with the same id exists.
    """

    async def get(self, user_id: str) -> dict[str, Any] | None: ...

    async def insert(self, row: dict[str, Any]) -> dict[str, Any]: ...

    async def ping(self) -> None: ...


# --- Module Notes -----------------------------------------------------------
# Implementations: `profiles.rest.RestProfileStore` (hosted REST API) and
# `db.repositories.profiles.SqlProfileStore` (SQLAlchemy, local dev/tests).
