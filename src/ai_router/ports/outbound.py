"""Outbound ports — interfaces that infrastructure adapters must implement.

These are the *driven* ports in hexagonal architecture.  The routing core
depends only on these abstractions, never on concrete implementations
(Redis clients, HTTP clients, etc.).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable

from ai_router.domain.exceptions import AIProviderError
from ai_router.shared.providers.types import (
    ExecutionMeta,
    ExecutionResult,
    ProviderConfig,
    QuotaSnapshot,
    RepairRequest,
    Reservation,
)


# ═══════════════════════════════════════════════════════════════
#  Provider adapter port
# ═══════════════════════════════════════════════════════════════
class ProviderAdapter(ABC):
    """One backend language-model service.

    ``execute`` returns the parsed structured payload or raises; failures
    should be ``AIProviderError`` instances, anything else is classified by
    the router.  Adapters that can ask the backend to fix its own invalid
    output override ``repair_invalid_response`` and report
    ``supports_repair``.
    """

    @abstractmethod
    async def execute(
        self, system_prompt: str, user_prompt: str, schema: dict[str, Any]
    ) -> ExecutionResult: ...

    @property
    def supports_repair(self) -> bool:
        return type(self).repair_invalid_response is not ProviderAdapter.repair_invalid_response

    async def repair_invalid_response(self, request: RepairRequest) -> ExecutionResult:
        raise NotImplementedError(f"{type(self).__name__} cannot repair responses")

    async def close(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════
#  Quota store port
# ═══════════════════════════════════════════════════════════════
class QuotaStorePort(ABC):
    """Sole owner of shared, cross-process routing state.

    Every read-modify-write must be atomic against the backing store.  All
    timestamps are epoch milliseconds supplied by the caller.
    """

    @abstractmethod
    async def try_reserve(self, cfg: ProviderConfig, now_ms: int) -> Reservation:
        """Check budget, rate window, concurrency and health; on success bump
        the rate window and take a concurrency lease.  Refusals mutate nothing."""
        ...

    @abstractmethod
    async def commit(
        self, cfg: ProviderConfig, lease_token: str, tokens_used: int, now_ms: int
    ) -> None:
        """Release the lease and count one request plus ``tokens_used``."""
        ...

    @abstractmethod
    async def release(self, cfg: ProviderConfig, lease_token: str, now_ms: int) -> None:
        """Release the lease without touching usage counters."""
        ...

    @abstractmethod
    async def apply_failure(
        self, cfg: ProviderConfig, error: AIProviderError, now_ms: int
    ) -> None:
        """Apply cooldown / block / disable per policy and bump the error tally."""
        ...

    @abstractmethod
    async def apply_success_signal(
        self, cfg: ProviderConfig, meta: ExecutionMeta, now_ms: int
    ) -> None:
        """Record externally reported remaining-capacity hints."""
        ...

    @abstractmethod
    async def snapshot_many(
        self, configs: Iterable[ProviderConfig], now_ms: int
    ) -> dict[str, QuotaSnapshot]: ...

    async def snapshot(self, cfg: ProviderConfig, now_ms: int) -> QuotaSnapshot:
        return (await self.snapshot_many([cfg], now_ms))[cfg.provider_id]

    @abstractmethod
    async def reset_provider(self, cfg: ProviderConfig) -> None:
        """Admin override — clear cooldown, block, disable and health."""
        ...

    @abstractmethod
    async def ping(self) -> bool: ...

    async def close(self) -> None:
        return None
