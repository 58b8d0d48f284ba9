"""Scorer — turns directory × quota snapshots into a ranked candidate list.

Pure: no I/O, no logging, no clock reads.  Concurrency is not part of
eligibility here; ``try_reserve`` checks it atomically at call time.

    score = ±priority
            − error_penalty_weight × error_tally
            − remaining_low_penalty   (if an external remaining hint is low)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from ai_router.domain.enums import RefusalReason
from ai_router.shared.providers.quota import QuotaPolicy, remaining_ratio
from ai_router.shared.providers.reserve import ReservePolicy
from ai_router.shared.providers.types import ProviderConfig, QuotaSnapshot, RankedCandidate


@dataclass(frozen=True)
class ScoringPolicy:
    priority_higher_wins: bool = True
    error_penalty_weight: float = 10.0
    remaining_low_threshold: int = 5
    remaining_tokens_low_threshold: int = 1000
    remaining_low_penalty: float = 50.0


@dataclass(frozen=True)
class Ranking:
    candidates: tuple[RankedCandidate, ...]
    excluded: Mapping[str, str] = field(default_factory=dict)
    reserve_admitted: bool | None = None

    @property
    def provider_ids(self) -> list[str]:
        return [c.config.provider_id for c in self.candidates]


class Scorer:
    def __init__(
        self,
        *,
        scoring: ScoringPolicy | None = None,
        quota: QuotaPolicy | None = None,
        reserve: ReservePolicy | None = None,
    ) -> None:
        self._scoring = scoring or ScoringPolicy()
        self._quota = quota or QuotaPolicy()
        self._reserve = reserve or ReservePolicy()

    # ── Eligibility ──────────────────────────────────────────
    def refusal(
        self, cfg: ProviderConfig, snap: QuotaSnapshot, now_ms: int
    ) -> RefusalReason | None:
        """Why ``try_reserve`` would refuse, ignoring concurrency."""
        if not cfg.enabled:
            return RefusalReason.DISABLED
        health = snap.health.refusal_at(now_ms)
        if health is not None:
            return health
        if (
            snap.requests_used + snap.in_flight >= cfg.daily_budget_requests
            or snap.tokens_used >= cfg.daily_budget_tokens
        ):
            return RefusalReason.BUDGET
        if snap.rate_window_count >= self._quota.rate_capacity(cfg):
            return RefusalReason.RATE
        return None

    # ── Scoring ──────────────────────────────────────────────
    def score(self, cfg: ProviderConfig, snap: QuotaSnapshot, now_ms: int) -> float:
        s = self._scoring
        base = cfg.priority if s.priority_higher_wins else -cfg.priority
        penalty = s.error_penalty_weight * snap.health.error_tally
        if self._hint_is_low(snap, now_ms):
            penalty += s.remaining_low_penalty
        return float(base - penalty)

    def _hint_is_low(self, snap: QuotaSnapshot, now_ms: int) -> bool:
        if snap.hint_reset_at_ms is not None and snap.hint_reset_at_ms <= now_ms:
            return False
        s = self._scoring
        if (
            snap.remaining_requests_hint is not None
            and snap.remaining_requests_hint < s.remaining_low_threshold
        ):
            return True
        return (
            snap.remaining_tokens_hint is not None
            and snap.remaining_tokens_hint < s.remaining_tokens_low_threshold
        )

    # ── Ranking ──────────────────────────────────────────────
    def rank(
        self,
        providers: Iterable[ProviderConfig],
        snapshots: Mapping[str, QuotaSnapshot],
        now_ms: int,
    ) -> Ranking:
        providers = list(providers)
        excluded: dict[str, str] = {}
        eligible: list[RankedCandidate] = []

        for cfg in providers:
            snap = snapshots.get(cfg.provider_id) or QuotaSnapshot(cfg.provider_id)
            reason = self.refusal(cfg, snap, now_ms)
            if reason is not None:
                excluded[cfg.provider_id] = reason.value
                continue
            eligible.append(RankedCandidate(cfg, self.score(cfg, snap, now_ms)))

        reserve_admitted: bool | None = None
        reserve = next(
            (c for c in eligible if self._reserve.is_reserve(c.config.provider_id)), None
        )
        if reserve is not None:
            others = [c for c in eligible if c is not reserve]
            ratios = [
                remaining_ratio(cfg, snapshots.get(cfg.provider_id) or QuotaSnapshot(cfg.provider_id))
                for cfg in providers
                if cfg.enabled and not self._reserve.is_reserve(cfg.provider_id)
            ]
            reserve_admitted = not others or self._reserve.admit(
                now_ms=now_ms,
                next_reset_ms=self._quota.next_reset_ms(now_ms),
                primary_remaining_ratios=ratios,
            )
            if not reserve_admitted:
                excluded[reserve.config.provider_id] = "reserve"
                eligible = others

        eligible.sort(key=lambda c: (-c.score, c.config.provider_id))
        return Ranking(tuple(eligible), excluded, reserve_admitted)
