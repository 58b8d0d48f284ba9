"""Quota policy — day boundaries, fixed rate windows, and derived limits.

Pure arithmetic shared by every quota store backend so that a Redis store
and an in-memory store agree exactly on which counter a request lands in.

* Daily counters roll over at ``reset_hour_utc`` (UTC) every day.
* Rate windows are fixed-width slices of ``window_minutes``; a slice's
  capacity is ``rpm × window_minutes × burst_multiplier``.
* A limit of 0 means "no capacity", never "unlimited".
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ai_router.shared.providers.types import ProviderConfig, QuotaSnapshot

_MS_PER_MINUTE = 60_000
_MS_PER_HOUR = 3_600_000
_MS_PER_DAY = 86_400_000


@dataclass(frozen=True)
class QuotaPolicy:
    """Tunables that shape how counters are bucketed and expired."""

    window_minutes: float = 1.0
    burst_multiplier: float = 1.0
    lease_ttl_seconds: float = 120.0
    health_window_seconds: float = 900.0
    reset_hour_utc: int = 0

    def __post_init__(self) -> None:
        if self.window_minutes <= 0:
            raise ValueError("window_minutes must be positive")
        if self.burst_multiplier <= 0:
            raise ValueError("burst_multiplier must be positive")
        if not 0 <= self.reset_hour_utc <= 23:
            raise ValueError("reset_hour_utc must be within 0..23")

    # ── Daily window ─────────────────────────────────────────
    def day_key(self, now_ms: int) -> str:
        shifted = datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc) - timedelta(
            hours=self.reset_hour_utc
        )
        return shifted.strftime("%Y%m%d")

    def next_reset_ms(self, now_ms: int) -> int:
        offset = self.reset_hour_utc * _MS_PER_HOUR
        day_start = ((now_ms - offset) // _MS_PER_DAY) * _MS_PER_DAY + offset
        return day_start + _MS_PER_DAY

    def day_ttl_seconds(self, now_ms: int) -> int:
        """Keep a day's counters a little past the boundary for late readers."""
        return math.ceil((self.next_reset_ms(now_ms) - now_ms) / 1000) + 3600

    # ── Rate window ──────────────────────────────────────────
    @property
    def window_ms(self) -> int:
        return int(self.window_minutes * _MS_PER_MINUTE)

    def rate_slice(self, now_ms: int) -> int:
        return now_ms // self.window_ms

    def rate_slice_ttl_ms(self, now_ms: int) -> int:
        slice_end = (self.rate_slice(now_ms) + 1) * self.window_ms
        return slice_end - now_ms + 1000

    def rate_capacity(self, cfg: ProviderConfig) -> int:
        if cfg.max_requests_per_minute <= 0:
            return 0
        raw = cfg.max_requests_per_minute * self.window_minutes * self.burst_multiplier
        return max(1, math.floor(raw))

    # ── Leases / health ──────────────────────────────────────
    @property
    def lease_ttl_ms(self) -> int:
        return int(self.lease_ttl_seconds * 1000)

    @property
    def health_window_ms(self) -> int:
        return int(self.health_window_seconds * 1000)


def remaining_requests(cfg: ProviderConfig, snap: QuotaSnapshot) -> int:
    return max(0, cfg.daily_budget_requests - snap.requests_used)


def remaining_tokens(cfg: ProviderConfig, snap: QuotaSnapshot) -> int:
    return max(0, cfg.daily_budget_tokens - snap.tokens_used)


def remaining_ratio(cfg: ProviderConfig, snap: QuotaSnapshot) -> float:
    """Fraction of the daily budget still available (the tighter of requests/tokens)."""
    ratios = []
    for budget, remaining in (
        (cfg.daily_budget_requests, remaining_requests(cfg, snap)),
        (cfg.daily_budget_tokens, remaining_tokens(cfg, snap)),
    ):
        ratios.append(remaining / budget if budget > 0 else 0.0)
    return min(ratios)
