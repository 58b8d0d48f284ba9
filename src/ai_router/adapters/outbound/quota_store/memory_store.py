"""In-process quota store.

Implements the same contract as ``RedisQuotaStore`` for single-process
deployments and tests.  Each operation runs under one ``asyncio.Lock``,
which is what makes check-and-reserve atomic here.  It is only ever used
when configured explicitly (``quota_backend=memory``).
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Iterable

import structlog

from ai_router.domain.enums import FailureAction, RefusalReason
from ai_router.domain.exceptions import AIProviderError
from ai_router.ports.outbound import QuotaStorePort
from ai_router.shared.providers.health import FailurePolicy
from ai_router.shared.providers.quota import QuotaPolicy
from ai_router.shared.providers.types import (
    ExecutionMeta,
    HealthState,
    ProviderConfig,
    QuotaSnapshot,
    Reservation,
)

logger = structlog.get_logger(__name__)


@dataclass
class _ProviderState:
    day: str = ""
    requests: int = 0
    tokens: int = 0
    rate_slice: int = -1
    rate_count: int = 0
    leases: dict[str, int] = field(default_factory=dict)
    cooldown_until: int = 0
    blocked_until: int = 0
    disabled_fingerprints: set[str] = field(default_factory=set)
    error_tally: int = 0
    tally_expires_at: int = 0
    hint: dict[str, int] = field(default_factory=dict)
    hint_expires_at: int = 0


class InMemoryQuotaStore(QuotaStorePort):
    """Lock-guarded, in-process implementation of ``QuotaStorePort``."""

    def __init__(
        self,
        *,
        policy: QuotaPolicy | None = None,
        failure_policy: FailurePolicy | None = None,
    ) -> None:
        self._policy = policy or QuotaPolicy()
        self._failures = failure_policy or FailurePolicy()
        self._states: dict[str, _ProviderState] = {}
        self._lock = asyncio.Lock()
        logger.info("quota_store_initialized_memory")

    @property
    def policy(self) -> QuotaPolicy:
        return self._policy

    # ── Admission ────────────────────────────────────────────
    async def try_reserve(self, cfg: ProviderConfig, now_ms: int) -> Reservation:
        async with self._lock:
            st = self._state(cfg.provider_id, now_ms)
            refusal = self._health(st, cfg, now_ms).refusal_at(now_ms)
            if refusal is not None:
                return Reservation(granted=False, reason=refusal)

            in_flight = len(st.leases)
            if (
                st.requests + in_flight >= cfg.daily_budget_requests
                or st.tokens >= cfg.daily_budget_tokens
            ):
                return Reservation(granted=False, reason=RefusalReason.BUDGET)
            if st.rate_count >= self._policy.rate_capacity(cfg):
                return Reservation(granted=False, reason=RefusalReason.RATE)
            if in_flight >= cfg.max_concurrency:
                return Reservation(granted=False, reason=RefusalReason.CONCURRENCY)

            token = uuid.uuid4().hex
            st.rate_count += 1
            st.leases[token] = now_ms + self._policy.lease_ttl_ms
            return Reservation(granted=True, lease_token=token)

    async def commit(
        self, cfg: ProviderConfig, lease_token: str, tokens_used: int, now_ms: int
    ) -> None:
        async with self._lock:
            st = self._state(cfg.provider_id, now_ms)
            st.leases.pop(lease_token, None)
            st.requests += 1
            st.tokens += max(0, int(tokens_used))
            if st.error_tally > 0:
                st.error_tally -= 1

    async def release(self, cfg: ProviderConfig, lease_token: str, now_ms: int) -> None:
        async with self._lock:
            self._state(cfg.provider_id, now_ms).leases.pop(lease_token, None)

    # ── Health ───────────────────────────────────────────────
    async def apply_failure(
        self, cfg: ProviderConfig, error: AIProviderError, now_ms: int
    ) -> None:
        decision = self._failures.decide(error)
        async with self._lock:
            st = self._state(cfg.provider_id, now_ms)
            duration = decision.duration_ms or 0
            if decision.action == FailureAction.COOLDOWN and duration > 0:
                st.cooldown_until = max(st.cooldown_until, now_ms + duration)
            elif decision.action == FailureAction.BLOCK and duration > 0:
                st.blocked_until = max(st.blocked_until, now_ms + duration)
            elif decision.action == FailureAction.DISABLE:
                st.disabled_fingerprints.add(cfg.credential_fingerprint)
            st.error_tally += 1
            st.tally_expires_at = now_ms + self._policy.health_window_ms
            tally = st.error_tally
        logger.warning(
            "provider_health_degraded",
            provider=cfg.provider_id,
            code=error.code,
            status=error.status,
            action=decision.action.value,
            duration_ms=decision.duration_ms,
            error_tally=tally,
        )

    async def apply_success_signal(
        self, cfg: ProviderConfig, meta: ExecutionMeta, now_ms: int
    ) -> None:
        hint = {
            name: value
            for name, value in (
                ("remaining_requests", meta.remaining_requests),
                ("remaining_tokens", meta.remaining_tokens),
                ("reset_at_ms", meta.reset_at_unix_ms),
            )
            if value is not None
        }
        if not hint:
            return
        expires_at = now_ms + self._policy.window_ms
        if meta.reset_at_unix_ms is not None and meta.reset_at_unix_ms > now_ms:
            expires_at = meta.reset_at_unix_ms
        async with self._lock:
            st = self._state(cfg.provider_id, now_ms)
            st.hint = hint
            st.hint_expires_at = expires_at

    # ── Reads ────────────────────────────────────────────────
    async def snapshot_many(
        self, configs: Iterable[ProviderConfig], now_ms: int
    ) -> dict[str, QuotaSnapshot]:
        async with self._lock:
            result: dict[str, QuotaSnapshot] = {}
            for cfg in configs:
                st = self._state(cfg.provider_id, now_ms)
                result[cfg.provider_id] = QuotaSnapshot(
                    provider_id=cfg.provider_id,
                    requests_used=st.requests,
                    tokens_used=st.tokens,
                    rate_window_count=st.rate_count,
                    in_flight=len(st.leases),
                    health=self._health(st, cfg, now_ms),
                    remaining_requests_hint=st.hint.get("remaining_requests"),
                    remaining_tokens_hint=st.hint.get("remaining_tokens"),
                    hint_reset_at_ms=st.hint.get("reset_at_ms"),
                )
            return result

    async def reset_provider(self, cfg: ProviderConfig) -> None:
        async with self._lock:
            st = self._states.get(cfg.provider_id)
            if st is not None:
                st.cooldown_until = st.blocked_until = 0
                st.disabled_fingerprints.clear()
                st.error_tally = 0
        logger.info("provider_admin_reset", provider=cfg.provider_id)

    async def ping(self) -> bool:
        return True

    # ── Internals ────────────────────────────────────────────
    def _state(self, provider_id: str, now_ms: int) -> _ProviderState:
        """Fetch state and roll expired windows forward. Caller holds lock."""
        st = self._states.setdefault(provider_id, _ProviderState())
        day = self._policy.day_key(now_ms)
        if st.day != day:
            st.day, st.requests, st.tokens = day, 0, 0
        rate_slice = self._policy.rate_slice(now_ms)
        if st.rate_slice != rate_slice:
            st.rate_slice, st.rate_count = rate_slice, 0
        st.leases = {t: exp for t, exp in st.leases.items() if exp > now_ms}
        if st.error_tally and st.tally_expires_at <= now_ms:
            st.error_tally = 0
        if st.hint and st.hint_expires_at <= now_ms:
            st.hint = {}
        return st

    def _health(self, st: _ProviderState, cfg: ProviderConfig, now_ms: int) -> HealthState:
        return HealthState(
            cooldown_until_ms=st.cooldown_until if st.cooldown_until > now_ms else None,
            blocked_until_ms=st.blocked_until if st.blocked_until > now_ms else None,
            disabled=cfg.credential_fingerprint in st.disabled_fingerprints,
            error_tally=st.error_tally,
        )
