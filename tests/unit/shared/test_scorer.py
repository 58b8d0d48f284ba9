"""Tests for eligibility, scoring, ranking and the reserve carve-out."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from ai_router.shared.providers.quota import QuotaPolicy
from ai_router.shared.providers.reserve import ReservePolicy
from ai_router.shared.providers.scorer import Scorer, ScoringPolicy
from ai_router.shared.providers.types import HealthState, ProviderConfig, QuotaSnapshot

NOON_MS = 1_773_144_000_000  # 2026-03-10 12:00 UTC
LATE_MS = 1_773_183_600_000  # 2026-03-10 23:00 UTC, one hour before reset


# ═══════════════════════════════════════════════════════════════
#  Ranking
# ═══════════════════════════════════════════════════════════════
class TestScorerRanking:
    def test_higher_priority_first(self, make_provider: Callable[..., ProviderConfig]) -> None:
        low, high = make_provider("low", priority=5), make_provider("high", priority=10)
        ranking = Scorer().rank([low, high], {}, NOON_MS)
        assert ranking.provider_ids == ["high", "low"]

    def test_priority_direction_configurable(
        self, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        low, high = make_provider("low", priority=5), make_provider("high", priority=10)
        scorer = Scorer(scoring=ScoringPolicy(priority_higher_wins=False))
        assert scorer.rank([low, high], {}, NOON_MS).provider_ids == ["low", "high"]

    def test_ties_broken_by_identity(self, make_provider: Callable[..., ProviderConfig]) -> None:
        providers = [make_provider(pid, priority=1) for pid in ("zeta", "alpha", "mid")]
        assert Scorer().rank(providers, {}, NOON_MS).provider_ids == ["alpha", "mid", "zeta"]

    def test_error_tally_penalises(self, make_provider: Callable[..., ProviderConfig]) -> None:
        a, b = make_provider("a", priority=10), make_provider("b", priority=5)
        snaps = {"a": QuotaSnapshot("a", health=HealthState(error_tally=1))}
        # 10 - 10*1 = 0 < 5
        assert Scorer().rank([a, b], snaps, NOON_MS).provider_ids == ["b", "a"]

    def test_low_remaining_hint_penalises(
        self, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        a, b = make_provider("a", priority=10), make_provider("b", priority=5)
        snaps = {"a": QuotaSnapshot("a", remaining_requests_hint=2)}
        assert Scorer().rank([a, b], snaps, NOON_MS).provider_ids == ["b", "a"]

    def test_low_token_hint_penalises(self, make_provider: Callable[..., ProviderConfig]) -> None:
        a, b = make_provider("a", priority=10), make_provider("b", priority=5)
        snaps = {"a": QuotaSnapshot("a", remaining_tokens_hint=10)}
        assert Scorer().rank([a, b], snaps, NOON_MS).provider_ids == ["b", "a"]

    def test_stale_hint_ignored(self, make_provider: Callable[..., ProviderConfig]) -> None:
        a, b = make_provider("a", priority=10), make_provider("b", priority=5)
        snaps = {"a": QuotaSnapshot("a", remaining_requests_hint=0, hint_reset_at_ms=NOON_MS - 1)}
        assert Scorer().rank([a, b], snaps, NOON_MS).provider_ids == ["a", "b"]


# ═══════════════════════════════════════════════════════════════
#  Eligibility
# ═══════════════════════════════════════════════════════════════
class TestScorerEligibility:
    def test_budget_exhausted_excluded(self, make_provider: Callable[..., ProviderConfig]) -> None:
        a = make_provider("a", daily_budget_requests=3)
        ranking = Scorer().rank([a], {"a": QuotaSnapshot("a", requests_used=3)}, NOON_MS)
        assert ranking.candidates == ()
        assert ranking.excluded == {"a": "budget"}

    def test_in_flight_counts_against_budget(
        self, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        a = make_provider("a", daily_budget_requests=3)
        snap = QuotaSnapshot("a", requests_used=2, in_flight=1)
        assert Scorer().rank([a], {"a": snap}, NOON_MS).excluded == {"a": "budget"}

    def test_token_budget_exhausted(self, make_provider: Callable[..., ProviderConfig]) -> None:
        a = make_provider("a", daily_budget_tokens=100)
        snap = QuotaSnapshot("a", tokens_used=100)
        assert Scorer().rank([a], {"a": snap}, NOON_MS).excluded == {"a": "budget"}

    def test_zero_budget_never_eligible(self, make_provider: Callable[..., ProviderConfig]) -> None:
        a = make_provider("a", daily_budget_requests=0)
        assert Scorer().rank([a], {}, NOON_MS).excluded == {"a": "budget"}

    def test_rate_window_full(self, make_provider: Callable[..., ProviderConfig]) -> None:
        a = make_provider("a", max_requests_per_minute=2)
        snap = QuotaSnapshot("a", rate_window_count=2)
        assert Scorer().rank([a], {"a": snap}, NOON_MS).excluded == {"a": "rate"}

    def test_concurrency_not_checked(self, make_provider: Callable[..., ProviderConfig]) -> None:
        a = make_provider("a", max_concurrency=1)
        snap = QuotaSnapshot("a", in_flight=1)
        assert Scorer().rank([a], {"a": snap}, NOON_MS).provider_ids == ["a"]

    def test_cooldown_boundary(self, make_provider: Callable[..., ProviderConfig]) -> None:
        a = make_provider("a")
        snap = QuotaSnapshot("a", health=HealthState(cooldown_until_ms=NOON_MS + 1000))
        scorer = Scorer()
        assert scorer.rank([a], {"a": snap}, NOON_MS + 999).excluded == {"a": "cooldown"}
        assert scorer.rank([a], {"a": snap}, NOON_MS + 1000).provider_ids == ["a"]

    def test_disabled_and_blocked(self, make_provider: Callable[..., ProviderConfig]) -> None:
        a, b, c = make_provider("a"), make_provider("b"), make_provider("c", enabled=False)
        snaps = {
            "a": QuotaSnapshot("a", health=HealthState(disabled=True)),
            "b": QuotaSnapshot("b", health=HealthState(blocked_until_ms=NOON_MS + 1)),
        }
        ranking = Scorer().rank([a, b, c], snaps, NOON_MS)
        assert ranking.excluded == {"a": "disabled", "b": "block", "c": "disabled"}


# ═══════════════════════════════════════════════════════════════
#  Reserve policy
# ═══════════════════════════════════════════════════════════════
class TestReservePolicy:
    policy = ReservePolicy(
        enabled=True,
        provider_id="Backup",
        release_hours_to_reset=2,
        release_primary_remaining_ratio=0.15,
    )

    def test_identity_normalised(self) -> None:
        assert self.policy.is_reserve("backup")
        assert not ReservePolicy(enabled=False, provider_id="backup").is_reserve("backup")

    def test_far_from_reset(self) -> None:
        assert not self.policy.admit(
            now_ms=NOON_MS, next_reset_ms=NOON_MS + 12 * 3_600_000, primary_remaining_ratios=[0.0]
        )

    def test_near_reset_but_primaries_healthy(self) -> None:
        assert not self.policy.admit(
            now_ms=LATE_MS, next_reset_ms=LATE_MS + 3_600_000, primary_remaining_ratios=[0.5, 0.9]
        )

    def test_near_reset_and_primary_low(self) -> None:
        assert self.policy.admit(
            now_ms=LATE_MS, next_reset_ms=LATE_MS + 3_600_000, primary_remaining_ratios=[0.9, 0.1]
        )

    def test_disabled_policy_always_admits(self) -> None:
        assert ReservePolicy().admit(now_ms=0, next_reset_ms=10**12, primary_remaining_ratios=[])


class TestScorerReserve:
    @pytest.fixture
    def scorer(self) -> Scorer:
        return Scorer(
            quota=QuotaPolicy(),
            reserve=ReservePolicy(enabled=True, provider_id="backup"),
        )

    def test_reserve_hidden_while_primaries_fine(
        self, scorer: Scorer, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        primary = make_provider("primary", daily_budget_requests=100)
        backup = make_provider("backup", priority=100)
        snaps = {"primary": QuotaSnapshot("primary", requests_used=10)}
        for now in (NOON_MS, LATE_MS):
            ranking = scorer.rank([primary, backup], snaps, now)
            assert ranking.provider_ids == ["primary"]
            assert ranking.excluded == {"backup": "reserve"}
            assert ranking.reserve_admitted is False

    def test_reserve_admitted_near_reset_when_primary_low(
        self, scorer: Scorer, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        primary = make_provider("primary", daily_budget_requests=100)
        backup = make_provider("backup", priority=100)
        snaps = {"primary": QuotaSnapshot("primary", requests_used=90)}
        assert scorer.rank([primary, backup], snaps, NOON_MS).provider_ids == ["primary"]
        ranking = scorer.rank([primary, backup], snaps, LATE_MS)
        assert ranking.provider_ids == ["backup", "primary"]
        assert ranking.reserve_admitted is True

    def test_reserve_is_last_resort(
        self, scorer: Scorer, make_provider: Callable[..., ProviderConfig]
    ) -> None:
        primary = make_provider("primary", daily_budget_requests=10)
        backup = make_provider("backup")
        snaps = {"primary": QuotaSnapshot("primary", requests_used=10)}
        ranking = scorer.rank([primary, backup], snaps, NOON_MS)
        assert ranking.provider_ids == ["backup"]
        assert ranking.excluded == {"primary": "budget"}
