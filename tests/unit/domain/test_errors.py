"""Tests for the error taxonomy and the attempt state machine."""

from __future__ import annotations

import pytest

from ai_router.domain.enums import AttemptState, ErrorCode, ErrorSubtype
from ai_router.domain.exceptions import (
    ROUTING_INFRASTRUCTURE,
    AuthError,
    DomainError,
    InvalidResponseError,
    LimitExceededError,
    ProviderError,
    RoutingInfrastructureError,
    build_provider_error,
)
from ai_router.shared.providers.types import ExecutionAttempt


class TestBuildProviderError:
    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_statuses(self, status: int) -> None:
        err = build_provider_error("alpha", "denied", status=status)
        assert isinstance(err, AuthError)
        assert err.error_code == ErrorCode.AUTH_ERROR
        assert err.status == status

    def test_payment_required(self) -> None:
        err = build_provider_error("alpha", "pay up", status=402)
        assert err.error_code == ErrorCode.PROVIDER_ERROR
        assert err.subtype == ErrorSubtype.PAYMENT_REQUIRED

    @pytest.mark.parametrize("status", [427, 429])
    def test_rate_limited(self, status: int) -> None:
        err = build_provider_error("alpha", "slow down", status=status)
        assert err.error_code == ErrorCode.PROVIDER_ERROR
        assert err.subtype == ErrorSubtype.RATE_LIMITED

    @pytest.mark.parametrize("status", [None, 400, 500, 503])
    def test_everything_else_is_generic(self, status: int | None) -> None:
        err = build_provider_error("alpha", "boom", status=status)
        assert type(err) is ProviderError
        assert err.subtype is None


class TestProviderErrors:
    def test_message_is_prefixed_with_provider(self) -> None:
        err = ProviderError("beta", "upstream exploded", status=500)
        assert str(err) == "[beta] upstream exploded"
        assert err.raw_message == "upstream exploded"
        assert err.code == "PROVIDER_ERROR"
        assert isinstance(err, DomainError)

    def test_limit_exceeded_defaults(self) -> None:
        err = LimitExceededError()
        assert err.error_code == ErrorCode.LIMIT_EXCEEDED
        assert err.provider == "router"

    def test_invalid_response_keeps_payload(self) -> None:
        err = InvalidResponseError("alpha", "bad json", invalid_payload="{oops")
        assert err.invalid_payload == "{oops"
        assert err.code == "INVALID_RESPONSE"

    def test_infrastructure_error_is_provider_error(self) -> None:
        err = RoutingInfrastructureError("redis down")
        assert err.error_code == ErrorCode.PROVIDER_ERROR
        assert err.provider == ROUTING_INFRASTRUCTURE


class TestAttemptStateMachine:
    def test_happy_path(self) -> None:
        attempt = ExecutionAttempt(provider_id="alpha", started_at_ms=0)
        attempt.advance(AttemptState.RESERVED)
        attempt.advance(AttemptState.SUCCEEDED)
        assert attempt.state.is_terminal

    def test_repair_path(self) -> None:
        attempt = ExecutionAttempt(provider_id="alpha", started_at_ms=0)
        for state in (
            AttemptState.RESERVED,
            AttemptState.INVALID_RESPONSE,
            AttemptState.REPAIRING,
            AttemptState.FAILED,
        ):
            attempt.advance(state)
        assert attempt.state == AttemptState.FAILED

    def test_no_second_repair(self) -> None:
        assert not AttemptState.REPAIRING.can_transition_to(AttemptState.INVALID_RESPONSE)
        assert not AttemptState.REPAIRING.can_transition_to(AttemptState.REPAIRING)

    def test_illegal_transition_raises(self) -> None:
        attempt = ExecutionAttempt(provider_id="alpha", started_at_ms=0)
        with pytest.raises(ValueError):
            attempt.advance(AttemptState.SUCCEEDED)

    def test_refused_is_terminal(self) -> None:
        assert AttemptState.REFUSED.is_terminal
        assert not AttemptState.RESERVED.is_terminal
