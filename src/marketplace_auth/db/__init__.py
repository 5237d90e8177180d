"""
marketplace_auth.db

Persistence package (SQLAlchemy async).

Responsibilities:
- Provide the `user_profiles` ORM model, engine/session setup, and the SQL profile store.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Used when `profile_backend="sql"` (local development, tests). Hosted deployments
# read and write profiles through the provider's REST API instead.
