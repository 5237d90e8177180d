"""
marketplace_auth.db.repositories.profiles

Repository and `ProfileStore` implementation for `UserProfile`.

Responsibilities:
- Primary-key lookup and insert of profile rows.
- Report unique-key races on insert as `DuplicateProfileError`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_auth.db.models import PROFILE_COLUMNS, UserProfile
from marketplace_auth.provider.errors import DuplicateProfileError

_TIMESTAMP_COLUMNS = ("created_at", "updated_at", "email_verified_at")


class UserProfileRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str) -> UserProfile | None:
        return await self._session.get(UserProfile, user_id)

    async def add(self, values: dict[str, Any]) -> UserProfile:
        profile = UserProfile(**values)
        self._session.add(profile)
        await self._session.flush()
        return profile

    async def first_id(self) -> str | None:
        return (await self._session.execute(select(UserProfile.id).limit(1))).scalar_one_or_none()


def _coerce(row: dict[str, Any]) -> dict[str, Any]:
    values = {k: v for k, v in row.items() if k in PROFILE_COLUMNS}
    for key in _TIMESTAMP_COLUMNS:
        if isinstance(values.get(key), str):
            values[key] = datetime.fromisoformat(values[key])
    return values


class SqlProfileStore:
    """
    Session-per-call store; safe to share across requests.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            profile = await UserProfileRepo(session).get(user_id)
            return profile.to_row() if profile else None

    async def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        values = _coerce(row)
        async with self._session_factory() as session:
            try:
                profile = await UserProfileRepo(session).add(values)
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                # Only an existing row with this id counts as the insert race.
                if await UserProfileRepo(session).get(str(values.get("id"))) is not None:
                    raise DuplicateProfileError(str(e.orig)) from e
                raise
            return profile.to_row()

    async def ping(self) -> None:
        async with self._session_factory() as session:
            await UserProfileRepo(session).first_id()


# --- Module Notes -----------------------------------------------------------
# Updates (onboarding steps, verification decisions) belong to other services;
# this subsystem only creates and reads profiles.
