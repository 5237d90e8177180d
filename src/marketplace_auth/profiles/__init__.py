"""
marketplace_auth.profiles

Profile persistence boundary.

Responsibilities:
- `ProfileStore` protocol consumed by the authentication services.
- REST (hosted provider) implementation; the SQL implementation lives in `db.repositories`.
- The backend is chosen from `Settings.profile_backend` in `api.app.create_app`.
"""

# Package marker.
