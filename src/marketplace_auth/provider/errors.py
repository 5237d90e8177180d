"""
marketplace_auth.provider.errors

Exceptions raised by the auth/database provider adapters.

Responsibilities:
- Carry the provider's error message, machine code and HTTP status.
- Parse provider JSON error bodies (auth API and REST API shapes).
"""

from __future__ import annotations

from typing import Any

import httpx

# PostgREST: "JSON object requested, multiple (or no) rows returned".
NO_ROWS_CODE = "PGRST116"
# Postgres unique_violation.
UNIQUE_VIOLATION_CODE = "23505"


class ProviderError(Exception):
    def __init__(self, message: str, *, code: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status

    @property
    def is_server_error(self) -> bool:
        return self.status is not None and self.status >= 500

    @property
    def is_auth_rejection(self) -> bool:
        return self.status in (401, 403)

    @classmethod
    def from_response(cls, response: httpx.Response) -> ProviderError:
        body: Any
        try:
            body = response.json()
        except ValueError:
            body = None

        message: str | None = None
        code: str | None = None
        if isinstance(body, dict):
            message = (
                body.get("msg")
                or body.get("message")
                or body.get("error_description")
                or body.get("error")
            )
            raw_code = body.get("code") or body.get("error_code")
            code = str(raw_code) if raw_code is not None else None

        if not message:
            message = response.text or response.reason_phrase or f"HTTP {response.status_code}"
        error_cls = DuplicateProfileError if code == UNIQUE_VIOLATION_CODE else cls
        return error_cls(str(message), code=code, status=response.status_code)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r}, code={self.code!r}, status={self.status!r})"


class DuplicateProfileError(ProviderError):
    """
    A profile row for this user already exists (concurrent self-heal won the insert).
    """

    def __init__(
        self,
        message: str = "duplicate key value violates unique constraint",
        *,
        code: str | None = UNIQUE_VIOLATION_CODE,
        status: int | None = 409,
    ) -> None:
        super().__init__(message, code=code, status=status)


# --- Module Notes -----------------------------------------------------------
# Transport failures (connect errors, timeouts) are not wrapped; they surface as
# httpx exceptions so callers and the circuit breaker can tell them apart.
