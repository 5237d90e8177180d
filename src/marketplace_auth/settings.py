"""
marketplace_auth.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Hide provider secrets from repr/logging (service-role key, JWT secret).
- Report whether the auth provider is configured well enough to serve requests.
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal
from urllib.parse import urlparse

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Env-driven configuration for the marketplace auth service.

    Provider credentials default to empty; the service still boots without them
    but every authentication attempt fails with a configuration error.
    """

    model_config = SettingsConfigDict(env_prefix="MARKETPLACE_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "marketplace-auth"
    log_level: str = "INFO"
    # None: JSON everywhere except dev.
    log_json: bool | None = None

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Auth/database provider
    supabase_url: str = ""
    supabase_anon_key: str = Field(default="", repr=False)
    supabase_service_role_key: str = Field(default="", repr=False)

    # Provider JWT settings (used to mint local dev tokens)
    jwt_alg: str = "HS256"
    jwt_audience: str = "authenticated"
    jwt_secret: str = Field(default="dev-secret-change-me-dev-secret-change-me", repr=False)

    # Session cookie written by the provider's SSR helpers
    session_cookie_name: str | None = None
    session_cookie_max_age: int = 400 * 24 * 60 * 60

    # Profiles
    profile_backend: Literal["rest", "sql"] = "rest"
    profiles_table: str = "user_profiles"
    database_url: str = "sqlite+aiosqlite:///./marketplace_auth.db"

    # Circuit breaker shared by the authentication strategies
    auth_breaker_failure_threshold: int = 3
    auth_breaker_reset_timeout_s: float = 30.0

    # Local telemetry buffering
    telemetry_error_queue_size: int = 10
    telemetry_metric_queue_size: int = 20

    # Rate limiting for /v1/auth/current-user
    auth_rate_limit_per_ip: int = 25
    auth_rate_limit_window_s: float = 300.0

    def missing_provider_settings(self) -> list[str]:
        missing: list[str] = []
        if not self.supabase_url:
            missing.append("supabase_url")
        if not self.supabase_anon_key:
            missing.append("supabase_anon_key")
        if not self.supabase_service_role_key:
            missing.append("supabase_service_role_key")
        return missing

    @property
    def provider_configured(self) -> bool:
        return not self.missing_provider_settings()

    @property
    def resolved_session_cookie_name(self) -> str:
        if self.session_cookie_name:
            return self.session_cookie_name
        # Provider convention: sb-<project-ref>-auth-token, project ref = first host label.
        host = urlparse(self.supabase_url).hostname or "local"
        return f"sb-{host.split('.')[0]}-auth-token"

    @property
    def use_json_logs(self) -> bool:
        if self.log_json is not None:
            return self.log_json
        return self.env != "dev"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Secrets are only ever read from the environment; never log a Settings dump with
# repr overrides removed.
