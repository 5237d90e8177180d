"""
marketplace_auth.auth

Authentication core.

Responsibilities:
- Error taxonomy, telemetry and the per-strategy circuit breaker.
- Credential strategies and the multi-strategy orchestrator with profile self-healing.
- Middleware authentication, onboarding redirects and the page route guard.
- FastAPI auth dependencies, rate limiting and dev token helpers.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Import submodules directly; this package deliberately re-exports nothing so
# importing it stays free of side effects.
