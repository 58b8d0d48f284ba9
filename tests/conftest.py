"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from ai_router.adapters.outbound.quota_store import InMemoryQuotaStore
from ai_router.ports.outbound import ProviderAdapter
from ai_router.shared.providers.directory import ProviderDirectory
from ai_router.shared.providers.health import FailurePolicy
from ai_router.shared.providers.quota import QuotaPolicy
from ai_router.shared.providers.types import (
    ExecutionMeta,
    ExecutionResult,
    ProviderConfig,
    RepairRequest,
)

# 2026-03-10 12:00:00 UTC
EPOCH_NOON_S = 1_773_144_000.0


class FakeClock:
    """Manually advanced wall clock (seconds, like ``time.time``)."""

    def __init__(self, start: float = EPOCH_NOON_S) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    @property
    def ms(self) -> int:
        return int(self.now * 1000)

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedAdapter(ProviderAdapter):
    """Adapter that replays a script of results / exceptions, one per call."""

    def __init__(self, *outcomes: Any) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.closed = False

    async def execute(
        self, system_prompt: str, user_prompt: str, schema: dict[str, Any]
    ) -> ExecutionResult:
        self.calls.append((system_prompt, user_prompt, schema))
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, ExecutionResult):
            return outcome
        return ExecutionResult(data=outcome, meta=ExecutionMeta(model="fake", tokens_used=10))

    async def close(self) -> None:
        self.closed = True


class RepairingAdapter(ScriptedAdapter):
    """Scripted adapter that also supports the repair operation."""

    def __init__(self, *outcomes: Any, repair: Any) -> None:
        super().__init__(*outcomes)
        self._repair = repair
        self.repairs: list[RepairRequest] = []

    async def repair_invalid_response(self, request: RepairRequest) -> ExecutionResult:
        self.repairs.append(request)
        if isinstance(self._repair, BaseException):
            raise self._repair
        return ExecutionResult(data=self._repair, meta=ExecutionMeta(model="fake", tokens_used=5))


def ok(data: Any = None, **meta: Any) -> ExecutionResult:
    meta.setdefault("tokens_used", 10)
    return ExecutionResult(data={"ok": True} if data is None else data, meta=ExecutionMeta(**meta))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_provider() -> Callable[..., ProviderConfig]:
    def _make(provider_id: str, **overrides: Any) -> ProviderConfig:
        values: dict[str, Any] = {
            "api_key": f"key-{provider_id}",
            "model": f"{provider_id}-model",
            "priority": 5,
            "daily_budget_requests": 100,
            "daily_budget_tokens": 100_000,
            "max_concurrency": 2,
            "max_requests_per_minute": 60,
        }
        values.update(overrides)
        return ProviderConfig(provider_id=provider_id, **values)

    return _make


@pytest.fixture
def quota_policy() -> QuotaPolicy:
    return QuotaPolicy()


@pytest.fixture
def failure_policy() -> FailurePolicy:
    return FailurePolicy(
        rate_limit_cooldown_seconds=60,
        provider_error_cooldown_seconds=30,
        payment_required_block_seconds=3600,
    )


@pytest.fixture
def memory_store(quota_policy: QuotaPolicy, failure_policy: FailurePolicy) -> InMemoryQuotaStore:
    return InMemoryQuotaStore(policy=quota_policy, failure_policy=failure_policy)


@pytest.fixture
def two_providers(make_provider: Callable[..., ProviderConfig]) -> ProviderDirectory:
    return ProviderDirectory(
        [
            make_provider("alpha", priority=10),
            make_provider("beta", priority=5),
        ]
    )
