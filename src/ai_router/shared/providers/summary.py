"""Summary reporter — read-only daily usage per provider."""

from __future__ import annotations

import time
from typing import Callable

from ai_router.ports.outbound import QuotaStorePort
from ai_router.shared.providers.directory import ProviderDirectory
from ai_router.shared.providers.quota import remaining_requests, remaining_tokens
from ai_router.shared.providers.types import DailySummary


class SummaryReporter:
    """Aggregates quota-store snapshots; never mutates anything."""

    def __init__(
        self,
        store: QuotaStorePort,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock

    async def daily_summary(self, directory: ProviderDirectory) -> dict[str, DailySummary]:
        now_ms = int(self._clock() * 1000)
        snapshots = await self._store.snapshot_many(directory, now_ms)
        summary: dict[str, DailySummary] = {}
        for cfg in directory:
            snap = snapshots[cfg.provider_id]
            summary[cfg.provider_id] = DailySummary(
                provider_id=cfg.provider_id,
                enabled=cfg.enabled,
                requests_used=snap.requests_used,
                tokens_used=snap.tokens_used,
                requests_remaining=remaining_requests(cfg, snap),
                tokens_remaining=remaining_tokens(cfg, snap),
                in_flight=snap.in_flight,
                health=snap.health,
                remaining_requests_hint=snap.remaining_requests_hint,
            )
        return summary
