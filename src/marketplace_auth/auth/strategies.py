"""
marketplace_auth.auth.strategies

Credential verification strategies.

Responsibilities:
- Define the strategy interface (`name`, `priority`, `verify`).
- Bearer token, cookie session and service-role verifiers.

Strategies do no circuit-breaker bookkeeping. A provider rejection is a plain
`success=False`; transport failures and provider 5xx responses raise so the
orchestrator can count them.
"""

from __future__ import annotations

import abc

from starlette.requests import HTTPConnection

from marketplace_auth.auth.models import AuthResult
from marketplace_auth.provider.client import SupabaseAuthClient
from marketplace_auth.provider.errors import ProviderError
from marketplace_auth.provider.session import SessionCookieClient, request_cookie_jar
from marketplace_auth.settings import Settings

BEARER_PREFIX = "Bearer "


class AuthStrategy(abc.ABC):
    name: str
    priority: int

    @abc.abstractmethod
    async def verify(self, request: HTTPConnection | None = None) -> AuthResult: ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"


class BearerTokenStrategy(AuthStrategy):
    name = "bearer-token"
    priority = 3

    def __init__(self, provider: SupabaseAuthClient) -> None:
        self._provider = provider

    async def verify(self, request: HTTPConnection | None = None) -> AuthResult:
        header = request.headers.get("authorization") if request is not None else None
        if not header or not header.startswith(BEARER_PREFIX):
            return AuthResult.failure("No bearer token")

        token = header[len(BEARER_PREFIX) :].strip()
        if not token:
            return AuthResult.failure("No bearer token")

        try:
            user = await self._provider.get_user(token)
        except ProviderError as e:
            if e.is_server_error:
                raise
            return AuthResult.failure(e.message)
        return AuthResult.ok(user)


class CookieSessionStrategy(AuthStrategy):
    name = "cookie-session"
    priority = 2

    def __init__(self, provider: SupabaseAuthClient, *, settings: Settings) -> None:
        self._provider = provider
        self._settings = settings

    async def verify(self, request: HTTPConnection | None = None) -> AuthResult:
        if request is None:
            return AuthResult.failure("No session")

        # Refreshed cookies land in the shared request jar; the response builder applies it.
        client = SessionCookieClient(
            provider=self._provider,
            jar=request_cookie_jar(request),
            cookie_name=self._settings.resolved_session_cookie_name,
            max_age=self._settings.session_cookie_max_age,
        )
        try:
            user = await client.get_user()
        except ProviderError as e:
            if e.is_server_error:
                raise
            return AuthResult.failure(e.message)

        if user is None:
            return AuthResult.failure("No session")
        return AuthResult.ok(user)


class ServiceRoleStrategy(AuthStrategy):
    """
    Reserved for system-to-system calls; never authenticates end users.
    """

    name = "service-role"
    priority = 1

    async def verify(self, request: HTTPConnection | None = None) -> AuthResult:
        return AuthResult.failure("Service role strategy not implemented for user auth")


def default_strategies(provider: SupabaseAuthClient, *, settings: Settings) -> list[AuthStrategy]:
    return [
        BearerTokenStrategy(provider),
        CookieSessionStrategy(provider, settings=settings),
        ServiceRoleStrategy(),
    ]


# --- Module Notes -----------------------------------------------------------
# New strategies only need a unique `name` (circuit breaker key) and a `priority`;
# the orchestrator sorts them highest first.
