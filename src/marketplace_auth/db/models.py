"""
marketplace_auth.db.models

Profile schema mirrored from the hosted database.

Responsibilities:
- Define `UserProfile`, keyed 1:1 by the provider's user id.
- Convert ORM rows to the plain dict shape the REST API returns.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_auth.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class UserProfile(Base):
    __tablename__ = "user_profiles"

    # Provider user id (UUID string); no FK because auth users live in the provider.
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    full_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    company_name: Mapped[str | None] = mapped_column(String(256), nullable=True)

    verification_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    is_onboarding_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    onboarding_step_completed: Mapped[int | None] = mapped_column(Integer, nullable=True, default=0)

    is_email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def to_row(self) -> dict[str, Any]:
        return {column.key: getattr(self, column.key) for column in self.__table__.columns}


PROFILE_COLUMNS: frozenset[str] = frozenset(c.key for c in UserProfile.__table__.columns)


# --- Module Notes -----------------------------------------------------------
# Column names match the hosted `user_profiles` table so rows from either backend
# feed `auth.models.Profile.from_row` unchanged.
