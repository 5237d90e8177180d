"""
tests.test_authentication_service

Multi-strategy orchestration, circuit breaker bookkeeping and profile self-healing.

Responsibilities:
- Priority order and first-success short-circuit.
- Strategy exceptions count as breaker failures without aborting the attempt.
- Profiles are created from signup metadata exactly once, even under concurrency.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest
from conftest import SESSION_COOKIE, InMemoryProfileStore, profile_row

from marketplace_auth.auth.circuit_breaker import BreakerState, CircuitBreaker
from marketplace_auth.auth.errors import AuthErrorType
from marketplace_auth.auth.models import AuthResult, Principal
from marketplace_auth.auth.service import AuthenticationService
from marketplace_auth.auth.strategies import AuthStrategy
from marketplace_auth.auth.telemetry import AuthLogger, BufferedTelemetrySink
from marketplace_auth.provider.errors import ProviderError
from marketplace_auth.provider.session import encode_session_cookie
from marketplace_auth.settings import Settings


class ScriptedStrategy(AuthStrategy):
    def __init__(self, name: str, priority: int, outcome: AuthResult | Exception) -> None:
        self.name = name
        self.priority = priority
        self.outcome = outcome
        self.calls = 0

    async def verify(self, request=None) -> AuthResult:
        self.calls += 1
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _service(settings, provider, profiles, auth_logger, **kwargs) -> AuthenticationService:
    return AuthenticationService(
        settings=settings,
        provider=provider,
        profiles=profiles,
        logger=auth_logger,
        **kwargs,
    )


def test_strategies_sorted_by_priority(settings, provider, profiles, auth_logger) -> None:
    low = ScriptedStrategy("low", 1, AuthResult.failure("no"))
    high = ScriptedStrategy("high", 9, AuthResult.failure("no"))
    service = _service(settings, provider, profiles, auth_logger, strategies=[low, high])
    assert [s.name for s in service.strategies] == ["high", "low"]


@pytest.mark.asyncio
async def test_first_success_short_circuits(settings, provider, profiles, auth_logger) -> None:
    profiles.rows["u1"] = profile_row("u1")
    first = ScriptedStrategy("first", 3, AuthResult.ok(Principal(id="u1")))
    second = ScriptedStrategy("second", 2, AuthResult.ok(Principal(id="u1")))
    service = _service(settings, provider, profiles, auth_logger, strategies=[second, first])

    result = await service.authenticate_user()

    assert result.success is True
    assert result.strategy == "first"
    assert result.profile is not None and result.profile.id == "u1"
    assert second.calls == 0


@pytest.mark.asyncio
async def test_bearer_wins_over_cookie(settings, provider, profiles, auth_logger, make_request) -> None:
    provider.add_user("bearer-tok", Principal(id="u1", email="u1@example.com"))
    provider.add_user("cookie-tok", Principal(id="u2", email="u2@example.com"))
    profiles.rows["u1"] = profile_row("u1")
    profiles.rows["u2"] = profile_row("u2")
    request = make_request(
        headers={"Authorization": "Bearer bearer-tok"},
        cookies={SESSION_COOKIE: encode_session_cookie({"access_token": "cookie-tok"})},
    )

    result = await _service(settings, provider, profiles, auth_logger).authenticate_user(request)

    assert result.success is True
    assert result.strategy == "bearer-token"
    assert result.user is not None and result.user.id == "u1"
    assert ("get_user", "cookie-tok") not in provider.calls


@pytest.mark.asyncio
async def test_network_failure_counts_and_next_strategy_runs(
    settings, provider, profiles, auth_logger, make_request
) -> None:
    breaker = CircuitBreaker(failure_threshold=5, reset_timeout_s=60)
    bearer = ScriptedStrategy("bearer-token", 3, httpx.ConnectError("connection refused"))
    cookie = ScriptedStrategy("cookie-session", 2, AuthResult.ok(Principal(id="u1")))
    profiles.rows["u1"] = profile_row("u1")
    service = _service(
        settings, provider, profiles, auth_logger, circuit_breaker=breaker, strategies=[bearer, cookie]
    )

    result = await service.authenticate_user(make_request())

    assert result.success is True
    assert result.strategy == "cookie-session"
    assert breaker.snapshot("bearer-token").failure_count == 1
    assert cookie.calls == 1
    errors = auth_logger.sink.recent_errors()
    assert [e.type for e in errors] == [AuthErrorType.network_error]


@pytest.mark.asyncio
async def test_open_circuit_skips_strategy(settings, provider, profiles, auth_logger) -> None:
    breaker = CircuitBreaker(failure_threshold=1, reset_timeout_s=60)
    breaker.record_failure("flaky")
    flaky = ScriptedStrategy("flaky", 3, AuthResult.ok(Principal(id="u1")))
    service = _service(settings, provider, profiles, auth_logger, circuit_breaker=breaker, strategies=[flaky])

    result = await service.authenticate_user()

    assert flaky.calls == 0
    assert result.success is False


@pytest.mark.asyncio
async def test_breaker_opens_after_repeated_exceptions(settings, provider, profiles, auth_logger) -> None:
    breaker = CircuitBreaker(failure_threshold=3, reset_timeout_s=60)
    broken = ScriptedStrategy("broken", 3, ProviderError("bad gateway", status=502))
    service = _service(settings, provider, profiles, auth_logger, circuit_breaker=breaker, strategies=[broken])

    for _ in range(4):
        await service.authenticate_user()

    assert broken.calls == 3
    assert service.circuit_breaker_status() == {"broken": BreakerState.open.value}


@pytest.mark.asyncio
async def test_success_resets_breaker(settings, provider, profiles, auth_logger) -> None:
    breaker = CircuitBreaker(failure_threshold=3, reset_timeout_s=60)
    breaker.record_failure("s")
    breaker.record_failure("s")
    profiles.rows["u1"] = profile_row("u1")
    s = ScriptedStrategy("s", 1, AuthResult.ok(Principal(id="u1")))
    service = _service(settings, provider, profiles, auth_logger, circuit_breaker=breaker, strategies=[s])

    await service.authenticate_user()

    assert breaker.snapshot("s").failure_count == 0


@pytest.mark.asyncio
async def test_plain_failure_does_not_touch_breaker(settings, provider, profiles, auth_logger) -> None:
    breaker = CircuitBreaker(failure_threshold=1, reset_timeout_s=60)
    s = ScriptedStrategy("s", 1, AuthResult.failure("nope"))
    service = _service(settings, provider, profiles, auth_logger, circuit_breaker=breaker, strategies=[s])

    result = await service.authenticate_user()

    assert result.success is False
    assert breaker.get_state("s") is BreakerState.closed


@pytest.mark.asyncio
async def test_all_strategies_failed(settings, provider, profiles, auth_logger, make_request) -> None:
    result = await _service(settings, provider, profiles, auth_logger).authenticate_user(make_request())

    assert result.success is False
    assert result.user is None
    assert result.error is not None
    assert result.error.type is AuthErrorType.invalid_credentials
    assert result.error.message == "All authentication strategies failed"
    assert result.error.user_message == "Please log in again"


@pytest.mark.asyncio
async def test_missing_provider_configuration(provider, profiles, auth_logger, make_request) -> None:
    s = ScriptedStrategy("s", 1, AuthResult.ok(Principal(id="u1")))
    service = _service(Settings(env="test"), provider, profiles, auth_logger, strategies=[s])

    result = await service.authenticate_user(make_request(headers={"Authorization": "Bearer x"}))

    assert result.success is False
    assert result.error is not None
    assert result.error.type is AuthErrorType.configuration_error
    assert result.error.severity.value == "critical"
    assert s.calls == 0


@pytest.mark.asyncio
async def test_profile_failure_moves_to_next_strategy(settings, provider, auth_logger) -> None:
    profiles = InMemoryProfileStore()
    profiles.get_error = ProviderError("connection reset by peer", status=None)
    breaker = CircuitBreaker(failure_threshold=1, reset_timeout_s=60)
    first = ScriptedStrategy("first", 2, AuthResult.ok(Principal(id="u1")))
    second = ScriptedStrategy("second", 1, AuthResult.failure("No session"))
    service = _service(settings, provider, profiles, auth_logger, circuit_breaker=breaker, strategies=[first, second])

    result = await service.authenticate_user()

    assert result.success is False
    assert second.calls == 1
    assert breaker.snapshot("first").failure_count == 1
    assert breaker.get_state("first") is BreakerState.open
    assert breaker.get_state("second") is BreakerState.closed
    assert AuthErrorType.network_error in [e.type for e in auth_logger.sink.recent_errors()]



@pytest.mark.asyncio
async def test_existing_profile_is_returned_untouched(settings, provider, profiles, auth_logger) -> None:
    profiles.rows["u1"] = profile_row("u1", role="seller", verification_status="verified")
    service = _service(settings, provider, profiles, auth_logger)

    recovery = await service.ensure_profile_exists(Principal(id="u1"))

    assert recovery.created is False
    assert recovery.recovered is False
    assert recovery.profile.role == "seller"
    assert recovery.profile.verification_status == "verified"
    assert profiles.inserted == []


@pytest.mark.asyncio
async def test_profile_created_from_admin_metadata(settings, provider, profiles, auth_logger) -> None:
    provider.admin_users["u5"] = Principal(
        id="u5",
        email="jane@example.com",
        user_metadata={
            "role": "seller",
            "fullName": "Jane Doe",
            "firstName": "Jane",
            "lastName": "Doe",
            "companyName": "Acme",
        },
    )
    service = _service(settings, provider, profiles, auth_logger)

    recovery = await service.ensure_profile_exists(Principal(id="u5", email="jane@example.com"))

    assert recovery.created is True
    profile = recovery.profile
    assert profile.role == "seller"
    assert profile.full_name == "Jane Doe"
    assert profile.company_name == "Acme"
    assert profile.verification_status == "pending"
    assert profile.is_onboarding_completed is False
    assert profile.onboarding_step_completed == 0


@pytest.mark.asyncio
async def test_profile_defaults_when_metadata_missing(settings, provider, profiles, auth_logger) -> None:
    # No admin record: falls back to the verified user's own (empty) metadata.
    service = _service(settings, provider, profiles, auth_logger)

    recovery = await service.ensure_profile_exists(Principal(id="u6", email="sam@example.com"))

    assert recovery.created is True
    assert recovery.profile.role == "buyer"
    assert recovery.profile.full_name == "sam"
    assert recovery.profile.first_name == ""


@pytest.mark.asyncio
async def test_profile_name_fallback_without_email(settings, provider, profiles, auth_logger) -> None:
    recovery = await _service(settings, provider, profiles, auth_logger).ensure_profile_exists(Principal(id="u7"))
    assert recovery.profile.full_name == "New User"


@pytest.mark.asyncio
@pytest.mark.parametrize("requested", ["admin", "superuser", ""])
async def test_self_healing_never_grants_other_roles(settings, provider, profiles, auth_logger, requested) -> None:
    provider.admin_users["u8"] = Principal(id="u8", user_metadata={"role": requested})
    recovery = await _service(settings, provider, profiles, auth_logger).ensure_profile_exists(Principal(id="u8"))
    assert recovery.profile.role == "buyer"


@pytest.mark.asyncio
async def test_concurrent_self_heal_creates_exactly_one_profile(settings, provider, profiles, auth_logger) -> None:
    service = _service(settings, provider, profiles, auth_logger)
    user = Principal(id="race", email="race@example.com")

    results = await asyncio.gather(*(service.ensure_profile_exists(user) for _ in range(5)))

    assert len(profiles.inserted) == 1
    assert sum(r.created for r in results) == 1
    assert sum(r.recovered for r in results) == 4
    assert {r.profile.id for r in results} == {"race"}


@pytest.mark.asyncio
async def test_insert_failure_other_than_duplicate_propagates(settings, provider, auth_logger) -> None:
    profiles = InMemoryProfileStore()
    profiles.insert_error = ProviderError("permission denied", status=403)
    service = _service(settings, provider, profiles, auth_logger)

    with pytest.raises(ProviderError):
        await service.ensure_profile_exists(Principal(id="u9"))


@pytest.mark.asyncio
async def test_success_records_metric(settings, provider, profiles, auth_logger: AuthLogger) -> None:
    profiles.rows["u1"] = profile_row("u1")
    s = ScriptedStrategy("s", 1, AuthResult.ok(Principal(id="u1")))
    await _service(settings, provider, profiles, auth_logger, strategies=[s]).authenticate_user()

    sink = auth_logger.sink
    assert isinstance(sink, BufferedTelemetrySink)
    [metric] = sink.recent_metrics()
    assert metric.operation == "multi-strategy-auth"
    assert metric.success is True
    assert metric.metadata["strategy"] == "s"
    assert metric.metadata["user_id"] == "u1"
