"""
marketplace_auth.db.repositories

Repository classes over the ORM models.
"""

# Package marker.
