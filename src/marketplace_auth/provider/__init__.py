"""
marketplace_auth.provider

Adapters for the hosted auth/database provider.

Responsibilities:
- Auth API client (token verification, session refresh, admin user lookup).
- Session cookie handling for SSR-style cookie sessions.
- Provider error types.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Everything provider-specific stays in this package so the auth core can be
# pointed at another backend by swapping adapters.
