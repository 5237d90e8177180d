"""
marketplace_auth.api

HTTP API package.

Responsibilities:
- FastAPI app factory, dependency wiring and routers.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Business logic stays in `marketplace_auth.auth`; routers only map results to HTTP.
