"""
marketplace_auth.api.app

FastAPI app factory for the marketplace auth service.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Compose the auth core once per app (provider client, profile store, telemetry,
  circuit breaker, both authentication services) and stash it on `app.state`.
- Own the lifecycle of shared infrastructure (HTTP client, DB engine).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from marketplace_auth.api.routers.admin import router as admin_router
from marketplace_auth.api.routers.auth import router as auth_router
from marketplace_auth.api.routers.dev_auth import router as dev_auth_router
from marketplace_auth.api.routers.health import router as health_router
from marketplace_auth.auth.guard import RouteGuardMiddleware
from marketplace_auth.auth.middleware import MiddlewareAuthenticationService
from marketplace_auth.auth.rate_limit import DEFAULT_RULES, RateLimiter, RateLimitRule
from marketplace_auth.auth.service import AuthenticationService
from marketplace_auth.auth.telemetry import AuthLogger, BufferedTelemetrySink
from marketplace_auth.db.init_db import init_db
from marketplace_auth.db.repositories.profiles import SqlProfileStore
from marketplace_auth.db.session import create_engine, create_sessionmaker
from marketplace_auth.observability.logging import configure_logging, get_logger
from marketplace_auth.observability.middleware import RequestContextMiddleware
from marketplace_auth.profiles.rest import RestProfileStore
from marketplace_auth.profiles.store import ProfileStore
from marketplace_auth.provider.client import SupabaseAuthClient
from marketplace_auth.settings import Settings

log = get_logger(__name__)


def create_app(
    *,
    settings: Settings,
    http: httpx.AsyncClient | None = None,
    profiles: ProfileStore | None = None,
) -> FastAPI:
    """
    `http` and `profiles` may be injected (tests, custom transports); otherwise they
    are built from settings and closed on shutdown.
    """

    configure_logging(
        service_name=settings.service_name,
        level=settings.log_level,
        json=settings.use_json_logs,
    )

    owns_http = http is None
    if http is None:
        http = httpx.AsyncClient(base_url=settings.supabase_url)

    engine = None
    if profiles is None:
        if settings.profile_backend == "sql":
            engine = create_engine(settings)
            profiles = SqlProfileStore(create_sessionmaker(engine))
        else:
            profiles = RestProfileStore(settings=settings, http=http)

    sink = BufferedTelemetrySink(
        max_errors=settings.telemetry_error_queue_size,
        max_metrics=settings.telemetry_metric_queue_size,
    )
    auth_logger = AuthLogger(sink)
    provider = SupabaseAuthClient(settings=settings, http=http)
    auth_service = AuthenticationService(
        settings=settings,
        provider=provider,
        profiles=profiles,
        logger=auth_logger,
    )
    middleware_auth = MiddlewareAuthenticationService(
        settings=settings,
        provider=provider,
        profiles=profiles,
        auth_service=auth_service,
        logger=auth_logger,
    )
    rate_limiter = RateLimiter(
        rules={
            **DEFAULT_RULES,
            "auth-per-ip": RateLimitRule(
                window_s=settings.auth_rate_limit_window_s,
                max_requests=settings.auth_rate_limit_per_ip,
                message=DEFAULT_RULES["auth-per-ip"].message,
            ),
        }
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        log.info(
            "startup",
            env=settings.env,
            profile_backend=settings.profile_backend,
            provider_configured=settings.provider_configured,
        )
        if engine is not None and settings.env in ("dev", "test"):
            # Dev/test convenience; the hosted database owns its schema in prod.
            await init_db(engine)
        try:
            yield
        finally:
            if owns_http:
                await http.aclose()
            if engine is not None:
                await engine.dispose()
            log.info("shutdown")

    app = FastAPI(
        title="Marketplace Auth",
        version="0.1.0",
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.telemetry = sink
    app.state.provider = provider
    app.state.profiles = profiles
    app.state.auth_service = auth_service
    app.state.middleware_auth = middleware_auth
    app.state.rate_limiter = rate_limiter

    # Last added runs first: request context wraps the route guard.
    app.add_middleware(RouteGuardMiddleware)
    app.add_middleware(RequestContextMiddleware)

    app.include_router(health_router, tags=["health"])
    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(dev_auth_router)

    return app


# --- Module Notes -----------------------------------------------------------
# This is the single composition root: services are explicitly constructed here
# and shared for the app's lifetime instead of living in module-level singletons.
