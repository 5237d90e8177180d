"""
marketplace_auth.db.base

SQLAlchemy declarative base for the profile tables.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
