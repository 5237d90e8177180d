"""
marketplace_auth.auth.rate_limit

In-process fixed-window rate limiter for auth endpoints.

Responsibilities:
- Count requests per (rule, identifier) inside a fixed window.
- Produce `X-RateLimit-*` headers for responses.
- Derive a client identifier (ip, user agent) from proxy headers.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from starlette.requests import HTTPConnection


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    window_s: float
    max_requests: int
    message: str


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds
    message: str | None = None

    def retry_after(self, now: float) -> int:
        return max(0, math.ceil(self.reset_at - now))


DEFAULT_RULES: dict[str, RateLimitRule] = {
    "auth": RateLimitRule(
        window_s=15 * 60,
        max_requests=10,
        message="Too many authentication attempts. Please try again in 15 minutes.",
    ),
    "auth-per-ip": RateLimitRule(
        window_s=5 * 60,
        max_requests=25,
        message="Too many requests from this IP. Please try again in 5 minutes.",
    ),
    "general": RateLimitRule(
        window_s=60,
        max_requests=100,
        message="Too many requests. Please slow down.",
    ),
}


@dataclass(slots=True)
class _Window:
    count: int
    started_at: float


class RateLimiter:
    def __init__(
        self,
        *,
        rules: dict[str, RateLimitRule] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._rules = dict(rules or DEFAULT_RULES)
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def check(self, identifier: str, rule_name: str = "general") -> RateLimitDecision:
        rule = self._rules[rule_name]
        now = self._clock()
        key = f"{rule_name}:{identifier}"

        self._cleanup(now)

        window = self._windows.get(key)
        if window is None or now - window.started_at >= rule.window_s:
            window = _Window(count=0, started_at=now)
            self._windows[key] = window

        window.count += 1
        allowed = window.count <= rule.max_requests
        return RateLimitDecision(
            allowed=allowed,
            remaining=max(0, rule.max_requests - window.count),
            reset_at=window.started_at + rule.window_s,
            message=None if allowed else rule.message,
        )

    def reset(self, identifier: str | None = None) -> None:
        if identifier is None:
            self._windows.clear()
            return
        for rule_name in self._rules:
            self._windows.pop(f"{rule_name}:{identifier}", None)

    def _cleanup(self, now: float) -> None:
        # Drop windows idle for two full window lengths.
        stale = [
            key
            for key, window in self._windows.items()
            if (rule := self._rules.get(key.split(":", 1)[0])) is not None
            and now - window.started_at >= rule.window_s * 2
        ]
        for key in stale:
            del self._windows[key]


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    return {
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(math.ceil(decision.reset_at)),
        "X-RateLimit-Reset-Time": datetime.fromtimestamp(decision.reset_at, tz=UTC).isoformat(),
    }


def client_identifier(conn: HTTPConnection) -> tuple[str, str]:
    headers = conn.headers
    forwarded = headers.get("x-forwarded-for")
    ip = (
        headers.get("cf-connecting-ip")
        or headers.get("x-vercel-forwarded-for")
        or headers.get("x-real-ip")
        or (forwarded.split(",")[0].strip() if forwarded else None)
        or (conn.client.host if conn.client else None)
        or "unknown"
    )
    return ip, headers.get("user-agent") or "unknown"


# --- Module Notes -----------------------------------------------------------
# Counters are per process. Behind multiple workers each worker enforces its own
# limit; move the windows to a shared store if that becomes a problem.
