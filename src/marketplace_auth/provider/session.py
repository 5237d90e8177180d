"""
marketplace_auth.provider.session

Cookie-backed provider sessions.

Responsibilities:
- Abstract cookie access behind a small `CookieJar` protocol (get/set/remove).
- Read/write the provider's session cookie (JSON or `base64-` encoded, optionally chunked).
- Resolve the session's user, refreshing expired tokens and writing them back.
- Share one cookie jar per request so refreshed cookies reach the response.
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from starlette.requests import HTTPConnection
from starlette.responses import Response

from marketplace_auth.auth.models import Principal
from marketplace_auth.observability.logging import get_logger
from marketplace_auth.provider.client import SupabaseAuthClient
from marketplace_auth.provider.errors import ProviderError

log = get_logger(__name__)

BASE64_PREFIX = "base64-"
JAR_STATE_ATTR = "session_cookie_jar"


class CookieJar(Protocol):
    def get(self, name: str) -> str | None: ...

    def set(self, name: str, value: str, **options: Any) -> None: ...

    def remove(self, name: str, **options: Any) -> None: ...


@dataclass(frozen=True, slots=True)
class CookieWrite:
    name: str
    value: str
    options: dict[str, Any]
    delete: bool = False


@dataclass(slots=True)
class RequestCookieJar:
    """
    Cookie jar over an incoming request's cookies.

    Writes update the local view immediately and are queued so `apply` can replay
    them onto the outgoing response.
    """

    cookies: dict[str, str] = field(default_factory=dict)
    writes: list[CookieWrite] = field(default_factory=list)

    @classmethod
    def from_cookies(cls, cookies: Mapping[str, str]) -> RequestCookieJar:
        return cls(cookies=dict(cookies))

    def get(self, name: str) -> str | None:
        return self.cookies.get(name)

    def set(self, name: str, value: str, **options: Any) -> None:
        self.cookies[name] = value
        self.writes.append(CookieWrite(name=name, value=value, options=options))

    def remove(self, name: str, **options: Any) -> None:
        self.cookies.pop(name, None)
        self.writes.append(CookieWrite(name=name, value="", options=options, delete=True))

    def apply(self, response: Response) -> None:
        for write in self.writes:
            if write.delete:
                response.delete_cookie(
                    write.name,
                    path=write.options.get("path", "/"),
                    domain=write.options.get("domain"),
                )
            else:
                response.set_cookie(write.name, write.value, **write.options)


def request_cookie_jar(request: HTTPConnection) -> RequestCookieJar:
    """
    The jar for this request, created on first use and kept on `request.state`.

    Whoever builds the response calls `apply` on it.
    """

    jar = getattr(request.state, JAR_STATE_ATTR, None)
    if jar is None:
        jar = RequestCookieJar.from_cookies(request.cookies)
        setattr(request.state, JAR_STATE_ATTR, jar)
    return jar


def decode_session_cookie(raw: str) -> dict[str, Any] | None:
    try:
        if raw.startswith(BASE64_PREFIX):
            encoded = raw[len(BASE64_PREFIX) :]
            padded = encoded + "=" * (-len(encoded) % 4)
            raw = base64.urlsafe_b64decode(padded).decode("utf-8")
        data = json.loads(raw)
    except (ValueError, binascii.Error, UnicodeDecodeError):
        return None

    # Legacy format: [access_token, refresh_token, ...]
    if isinstance(data, list) and len(data) >= 2:
        return {"access_token": data[0], "refresh_token": data[1]}
    if isinstance(data, dict):
        return data
    return None


def encode_session_cookie(session: Mapping[str, Any]) -> str:
    payload = json.dumps(dict(session), separators=(",", ":")).encode("utf-8")
    return BASE64_PREFIX + base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")


class SessionCookieClient:
    def __init__(
        self,
        *,
        provider: SupabaseAuthClient,
        jar: CookieJar,
        cookie_name: str,
        max_age: int = 400 * 24 * 60 * 60,
    ) -> None:
        self._provider = provider
        self._jar = jar
        self._cookie_name = cookie_name
        self._max_age = max_age

    def _cookie_options(self) -> dict[str, Any]:
        return {"path": "/", "samesite": "lax", "max_age": self._max_age}

    def _chunk_names(self) -> list[str]:
        names: list[str] = []
        while self._jar.get(f"{self._cookie_name}.{len(names)}") is not None:
            names.append(f"{self._cookie_name}.{len(names)}")
        return names

    def read_session(self) -> dict[str, Any] | None:
        raw = self._jar.get(self._cookie_name)
        if raw is None:
            chunks = [self._jar.get(name) or "" for name in self._chunk_names()]
            raw = "".join(chunks) or None
        if raw is None:
            return None

        session = decode_session_cookie(raw)
        if session is None:
            log.warning("session_cookie_malformed", cookie=self._cookie_name)
        return session

    def write_session(self, session: Mapping[str, Any]) -> None:
        for name in self._chunk_names():
            self._jar.remove(name, path="/")
        self._jar.set(self._cookie_name, encode_session_cookie(session), **self._cookie_options())

    def clear_session(self) -> None:
        self._jar.remove(self._cookie_name, path="/")
        for name in self._chunk_names():
            self._jar.remove(name, path="/")

    async def get_user(self) -> Principal | None:
        """
        Return the session's user, or None when there is no usable session.

        Raises `ProviderError` when the provider rejects the session and it cannot
        be refreshed.
        """

        session = self.read_session()
        if not session or not session.get("access_token"):
            return None

        try:
            return await self._provider.get_user(str(session["access_token"]))
        except ProviderError as e:
            refresh_token = session.get("refresh_token")
            if not e.is_auth_rejection or not refresh_token:
                raise

        try:
            refreshed = await self._provider.refresh_session(str(refresh_token))
        except ProviderError as e:
            if not e.is_server_error:
                # Refresh token revoked or expired: the session is gone for good.
                self.clear_session()
            raise

        self.write_session(refreshed)
        log.info("session_refreshed", cookie=self._cookie_name)
        if isinstance(refreshed.get("user"), Mapping):
            return Principal.from_payload(refreshed["user"])
        return await self._provider.get_user(str(refreshed["access_token"]))


# --- Module Notes -----------------------------------------------------------
# Writes are always a single unchunked cookie; chunked cookies from other clients
# are still readable and are cleared whenever the session is rewritten.
