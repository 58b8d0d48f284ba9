"""Reserve policy — keeps one contingency provider out of normal ranking.

The reserve provider is only re-admitted when the daily reset is close
(``release_hours_to_reset``) *and* some primary provider has burned
through its budget (remaining ratio below ``release_primary_remaining_ratio``).
The scorer additionally admits it when it is the only candidate left.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

_MS_PER_HOUR = 3_600_000


@dataclass(frozen=True)
class ReservePolicy:
    enabled: bool = False
    provider_id: str = ""
    release_hours_to_reset: float = 2.0
    release_primary_remaining_ratio: float = 0.15

    def __post_init__(self) -> None:
        object.__setattr__(self, "provider_id", self.provider_id.strip().lower())

    def is_reserve(self, provider_id: str) -> bool:
        return self.enabled and bool(self.provider_id) and provider_id == self.provider_id

    def admit(
        self,
        *,
        now_ms: int,
        next_reset_ms: int,
        primary_remaining_ratios: Iterable[float],
    ) -> bool:
        """Should the reserve provider join normal ranking right now?"""
        if not self.enabled:
            return True
        hours_to_reset = (next_reset_ms - now_ms) / _MS_PER_HOUR
        if hours_to_reset > self.release_hours_to_reset:
            return False
        return any(r < self.release_primary_remaining_ratio for r in primary_remaining_ratios)
