"""Tests for the Redis quota store with its Lua scripts executed by fakeredis.

Unlike ``test_redis_quota_store`` (mocked client, wire shape only), these run
the real TRY_RESERVE / COMMIT / APPLY_FAILURE sources, so counting, refusal
order and deadline arithmetic are exercised end to end.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import fakeredis
import pytest

from ai_router.adapters.outbound.quota_store import RedisQuotaStore
from ai_router.domain.enums import RefusalReason
from ai_router.domain.exceptions import (
    AuthError,
    InvalidResponseError,
    build_provider_error,
)
from ai_router.shared.providers.health import FailurePolicy
from ai_router.shared.providers.quota import QuotaPolicy
from ai_router.shared.providers.types import ExecutionMeta, ProviderConfig

NOON_MS = 1_773_144_000_000  # 2026-03-10 12:00 UTC


@pytest.fixture
def store(failure_policy: FailurePolicy) -> RedisQuotaStore:
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    return RedisQuotaStore(
        client,
        policy=QuotaPolicy(),
        failure_policy=failure_policy,
        key_prefix="test",
    )


# ═══════════════════════════════════════════════════════════════
#  Reservation and commit
# ═══════════════════════════════════════════════════════════════
class TestScriptedReservation:
    @pytest.mark.asyncio
    async def test_grant_then_commit_counts_usage(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha")
        res = await store.try_reserve(cfg, NOON_MS)
        assert res.granted

        held = await store.snapshot(cfg, NOON_MS)
        assert (held.in_flight, held.rate_window_count, held.requests_used) == (1, 1, 0)

        await store.commit(cfg, res.lease_token, 250, NOON_MS + 500)

        snap = await store.snapshot(cfg, NOON_MS + 500)
        assert (snap.requests_used, snap.tokens_used, snap.in_flight) == (1, 250, 0)
        assert snap.rate_window_count == 1

    @pytest.mark.asyncio
    async def test_release_frees_slot_without_counting(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha")
        res = await store.try_reserve(cfg, NOON_MS)
        await store.release(cfg, res.lease_token, NOON_MS + 10)

        snap = await store.snapshot(cfg, NOON_MS + 10)
        assert (snap.requests_used, snap.in_flight) == (0, 0)

    @pytest.mark.asyncio
    async def test_refusal_leaves_counters_untouched(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha", daily_budget_requests=0)
        res = await store.try_reserve(cfg, NOON_MS)
        assert res.reason == RefusalReason.BUDGET

        snap = await store.snapshot(cfg, NOON_MS)
        assert (snap.rate_window_count, snap.in_flight) == (0, 0)

    @pytest.mark.asyncio
    async def test_budget_counts_in_flight_reservations(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha", daily_budget_requests=2, max_concurrency=5)
        assert (await store.try_reserve(cfg, NOON_MS)).granted
        assert (await store.try_reserve(cfg, NOON_MS + 1)).granted

        third = await store.try_reserve(cfg, NOON_MS + 2)
        assert third.reason == RefusalReason.BUDGET

    @pytest.mark.asyncio
    async def test_token_budget_refuses(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha", daily_budget_tokens=100)
        res = await store.try_reserve(cfg, NOON_MS)
        await store.commit(cfg, res.lease_token, 100, NOON_MS)

        refused = await store.try_reserve(cfg, NOON_MS + 1)
        assert refused.reason == RefusalReason.BUDGET

    @pytest.mark.asyncio
    async def test_rate_capacity_per_slice(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha", max_requests_per_minute=2)
        for offset in (0, 1):
            res = await store.try_reserve(cfg, NOON_MS + offset)
            await store.commit(cfg, res.lease_token, 1, NOON_MS + offset)

        assert (await store.try_reserve(cfg, NOON_MS + 2)).reason == RefusalReason.RATE
        assert (await store.try_reserve(cfg, NOON_MS + 60_000)).granted

    @pytest.mark.asyncio
    async def test_concurrency_cap_holds_under_gather(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha", max_concurrency=3)

        results = await asyncio.gather(*(store.try_reserve(cfg, NOON_MS) for _ in range(20)))

        granted = [r for r in results if r.granted]
        assert len(granted) == 3
        assert len({r.lease_token for r in granted}) == 3
        assert {r.reason for r in results if not r.granted} == {RefusalReason.CONCURRENCY}
        snap = await store.snapshot(cfg, NOON_MS)
        assert (snap.in_flight, snap.rate_window_count) == (3, 3)

    @pytest.mark.asyncio
    async def test_expired_lease_frees_its_slot(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha", max_concurrency=1)
        assert (await store.try_reserve(cfg, NOON_MS)).granted
        refused = await store.try_reserve(cfg, NOON_MS + 1_000)
        assert refused.reason == RefusalReason.CONCURRENCY

        # lease ttl is 120s
        assert (await store.try_reserve(cfg, NOON_MS + 120_000)).granted


# ═══════════════════════════════════════════════════════════════
#  Failure deadlines
# ═══════════════════════════════════════════════════════════════
class TestScriptedFailures:
    @pytest.mark.asyncio
    async def test_rate_limit_cooldown_boundary(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha")
        await store.apply_failure(
            cfg, build_provider_error("alpha", "slow down", status=429), NOON_MS
        )

        before = await store.try_reserve(cfg, NOON_MS + 59_999)
        assert before.reason == RefusalReason.COOLDOWN
        assert (await store.try_reserve(cfg, NOON_MS + 60_000)).granted

    @pytest.mark.asyncio
    async def test_cooldown_only_moves_forward(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha")
        await store.apply_failure(
            cfg, build_provider_error("alpha", "slow down", status=429), NOON_MS
        )
        await store.apply_failure(
            cfg, build_provider_error("alpha", "boom", status=500), NOON_MS + 10_000
        )

        snap = await store.snapshot(cfg, NOON_MS + 10_000)
        assert snap.health.cooldown_until_ms == NOON_MS + 60_000
        assert snap.health.error_tally == 2

    @pytest.mark.asyncio
    async def test_payment_required_blocks(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha")
        await store.apply_failure(
            cfg, build_provider_error("alpha", "pay up", status=402), NOON_MS
        )

        assert (await store.try_reserve(cfg, NOON_MS + 1_000)).reason == RefusalReason.BLOCK
        snap = await store.snapshot(cfg, NOON_MS + 1_000)
        assert snap.health.blocked_until_ms == NOON_MS + 3_600_000
        assert snap.health.cooldown_until_ms is None

    @pytest.mark.asyncio
    async def test_auth_failure_disables_credential_until_reset(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha")
        await store.apply_failure(cfg, AuthError("alpha", "bad key", status=401), NOON_MS)

        assert (await store.try_reserve(cfg, NOON_MS + 1)).reason == RefusalReason.DISABLED
        rotated = make_provider("alpha", api_key="rotated-key")
        assert (await store.try_reserve(rotated, NOON_MS + 2)).granted

        await store.reset_provider(cfg)

        assert (await store.try_reserve(cfg, NOON_MS + 3)).granted
        snap = await store.snapshot(cfg, NOON_MS + 3)
        assert snap.health.disabled is False
        assert snap.health.error_tally == 0

    @pytest.mark.asyncio
    async def test_commit_decays_error_tally(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha")
        await store.apply_failure(cfg, InvalidResponseError("alpha", "bad json"), NOON_MS)
        assert (await store.snapshot(cfg, NOON_MS)).health.error_tally == 1

        res = await store.try_reserve(cfg, NOON_MS + 1)
        await store.commit(cfg, res.lease_token, 5, NOON_MS + 2)

        assert (await store.snapshot(cfg, NOON_MS + 2)).health.error_tally == 0


# ═══════════════════════════════════════════════════════════════
#  Success hints
# ═══════════════════════════════════════════════════════════════
class TestScriptedSuccessHint:
    @pytest.mark.asyncio
    async def test_hint_visible_in_snapshot(
        self, store: RedisQuotaStore, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        cfg = make_provider("alpha")
        meta = ExecutionMeta(
            model="m",
            tokens_used=3,
            remaining_requests=7,
            reset_at_unix_ms=NOON_MS + 30_000,
        )
        await store.apply_success_signal(cfg, meta, NOON_MS)

        snap = await store.snapshot(cfg, NOON_MS)
        assert snap.remaining_requests_hint == 7
        assert snap.remaining_tokens_hint is None
        assert snap.hint_reset_at_ms == NOON_MS + 30_000
