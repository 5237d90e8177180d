"""
marketplace_auth.db.init_db

DB initialization helper (dev/test convenience).

Responsibilities:
- Create the profile table for local development and tests.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine

from marketplace_auth.db import models  # noqa: F401  # register tables on Base.metadata
from marketplace_auth.db.base import Base


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# --- Module Notes -----------------------------------------------------------
# The hosted database owns its schema; this only runs for the SQL backend in dev/test.
