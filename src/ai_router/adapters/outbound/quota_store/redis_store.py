"""Redis quota store — shared admission-control state for every router instance.

All read-modify-write operations run as Lua scripts (see ``scripts``);
snapshots are read through a MULTI/EXEC pipeline so one provider's fields
are mutually consistent.  Keys for one provider share a hash tag so the
scripts also work against Redis Cluster.

An unreachable Redis is fatal for the request: every ``redis.RedisError``
surfaces as ``RoutingInfrastructureError``; there is no in-memory fallback.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Iterable

import redis.asyncio as redis
import structlog

from ai_router.adapters.outbound.quota_store import scripts
from ai_router.domain.enums import FailureAction, RefusalReason
from ai_router.domain.exceptions import AIProviderError, RoutingInfrastructureError
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

_SNAPSHOT_FIELDS = 8


class RedisQuotaStore(QuotaStorePort):
    """Async Redis implementation of ``QuotaStorePort``."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        policy: QuotaPolicy | None = None,
        failure_policy: FailurePolicy | None = None,
        key_prefix: str = "ai_router",
    ) -> None:
        self._client = client
        self._policy = policy or QuotaPolicy()
        self._failures = failure_policy or FailurePolicy()
        self._prefix = key_prefix

        self._try_reserve_script = client.register_script(scripts.TRY_RESERVE)
        self._commit_script = client.register_script(scripts.COMMIT)
        self._apply_failure_script = client.register_script(scripts.APPLY_FAILURE)

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        max_connections: int = 50,
        **kwargs: Any,
    ) -> RedisQuotaStore:
        pool = redis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        return cls(redis.Redis(connection_pool=pool), **kwargs)

    @property
    def policy(self) -> QuotaPolicy:
        return self._policy

    # ── Keys ─────────────────────────────────────────────────
    def _key(self, provider_id: str, *parts: str) -> str:
        return ":".join((self._prefix, f"{{{provider_id}}}", *parts))

    def _day_key(self, cfg: ProviderConfig, now_ms: int) -> str:
        return self._key(cfg.provider_id, "day", self._policy.day_key(now_ms))

    def _rate_key(self, cfg: ProviderConfig, now_ms: int) -> str:
        return self._key(cfg.provider_id, "rate", str(self._policy.rate_slice(now_ms)))

    def _disabled_key(self, cfg: ProviderConfig) -> str:
        return self._key(cfg.provider_id, "disabled", cfg.credential_fingerprint)

    # ── Admission ────────────────────────────────────────────
    async def try_reserve(self, cfg: ProviderConfig, now_ms: int) -> Reservation:
        token = uuid.uuid4().hex
        with _store_errors("try_reserve", cfg.provider_id):
            granted, reason = await self._try_reserve_script(
                keys=[
                    self._day_key(cfg, now_ms),
                    self._rate_key(cfg, now_ms),
                    self._key(cfg.provider_id, "leases"),
                    self._key(cfg.provider_id, "cooldown"),
                    self._key(cfg.provider_id, "block"),
                    self._disabled_key(cfg),
                ],
                args=[
                    now_ms,
                    cfg.daily_budget_requests,
                    cfg.daily_budget_tokens,
                    self._policy.rate_capacity(cfg),
                    self._policy.rate_slice_ttl_ms(now_ms),
                    cfg.max_concurrency,
                    token,
                    self._policy.lease_ttl_ms,
                ],
            )
        if int(granted) == 1:
            return Reservation(granted=True, lease_token=token)
        return Reservation(granted=False, reason=RefusalReason(_text(reason)))

    async def commit(
        self, cfg: ProviderConfig, lease_token: str, tokens_used: int, now_ms: int
    ) -> None:
        with _store_errors("commit", cfg.provider_id):
            requests_used = await self._commit_script(
                keys=[
                    self._day_key(cfg, now_ms),
                    self._key(cfg.provider_id, "leases"),
                    self._key(cfg.provider_id, "health"),
                ],
                args=[lease_token, max(0, int(tokens_used)), self._policy.day_ttl_seconds(now_ms)],
            )
        logger.debug(
            "quota_committed",
            provider=cfg.provider_id,
            tokens=tokens_used,
            requests_used=int(requests_used or 0),
        )

    async def release(self, cfg: ProviderConfig, lease_token: str, now_ms: int) -> None:
        with _store_errors("release", cfg.provider_id):
            await self._client.zrem(self._key(cfg.provider_id, "leases"), lease_token)

    # ── Health ───────────────────────────────────────────────
    async def apply_failure(
        self, cfg: ProviderConfig, error: AIProviderError, now_ms: int
    ) -> None:
        decision = self._failures.decide(error)
        with _store_errors("apply_failure", cfg.provider_id):
            tally = await self._apply_failure_script(
                keys=[
                    self._key(cfg.provider_id, "cooldown"),
                    self._key(cfg.provider_id, "block"),
                    self._disabled_key(cfg),
                    self._key(cfg.provider_id, "health"),
                ],
                args=[
                    decision.action.value,
                    now_ms,
                    decision.duration_ms or 0,
                    self._policy.health_window_ms,
                ],
            )
        log = logger.warning if decision.action != FailureAction.NONE else logger.info
        log(
            "provider_health_degraded",
            provider=cfg.provider_id,
            code=error.code,
            status=error.status,
            action=decision.action.value,
            duration_ms=decision.duration_ms,
            error_tally=int(tally or 0),
        )

    async def apply_success_signal(
        self, cfg: ProviderConfig, meta: ExecutionMeta, now_ms: int
    ) -> None:
        hint: dict[str, int] = {
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
        ttl_ms = self._policy.window_ms
        if meta.reset_at_unix_ms is not None and meta.reset_at_unix_ms > now_ms:
            ttl_ms = meta.reset_at_unix_ms - now_ms
        key = self._key(cfg.provider_id, "hint")
        with _store_errors("apply_success_signal", cfg.provider_id):
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(key, mapping=hint)
                pipe.pexpire(key, ttl_ms)
                await pipe.execute()

    # ── Reads ────────────────────────────────────────────────
    async def snapshot_many(
        self, configs: Iterable[ProviderConfig], now_ms: int
    ) -> dict[str, QuotaSnapshot]:
        configs = list(configs)
        if not configs:
            return {}
        with _store_errors("snapshot", ",".join(c.provider_id for c in configs)):
            async with self._client.pipeline(transaction=True) as pipe:
                for cfg in configs:
                    pid = cfg.provider_id
                    pipe.hmget(self._day_key(cfg, now_ms), ["requests", "tokens"])
                    pipe.get(self._rate_key(cfg, now_ms))
                    pipe.zcount(self._key(pid, "leases"), f"({now_ms}", "+inf")
                    pipe.get(self._key(pid, "cooldown"))
                    pipe.get(self._key(pid, "block"))
                    pipe.exists(self._disabled_key(cfg))
                    pipe.get(self._key(pid, "health"))
                    pipe.hgetall(self._key(pid, "hint"))
                raw = await pipe.execute()

        result: dict[str, QuotaSnapshot] = {}
        for idx, cfg in enumerate(configs):
            day, rate, in_flight, cooldown, block, disabled, tally, hint = raw[
                idx * _SNAPSHOT_FIELDS : (idx + 1) * _SNAPSHOT_FIELDS
            ]
            result[cfg.provider_id] = QuotaSnapshot(
                provider_id=cfg.provider_id,
                requests_used=_int(day[0]),
                tokens_used=_int(day[1]),
                rate_window_count=_int(rate),
                in_flight=_int(in_flight),
                health=HealthState(
                    cooldown_until_ms=_future(cooldown, now_ms),
                    blocked_until_ms=_future(block, now_ms),
                    disabled=bool(_int(disabled)),
                    error_tally=_int(tally),
                ),
                remaining_requests_hint=_opt_int(hint.get("remaining_requests")),
                remaining_tokens_hint=_opt_int(hint.get("remaining_tokens")),
                hint_reset_at_ms=_opt_int(hint.get("reset_at_ms")),
            )
        return result

    # ── Admin / lifecycle ────────────────────────────────────
    async def reset_provider(self, cfg: ProviderConfig) -> None:
        pid = cfg.provider_id
        with _store_errors("reset_provider", pid):
            disabled = [k async for k in self._client.scan_iter(match=self._key(pid, "disabled", "*"))]
            await self._client.delete(
                self._key(pid, "cooldown"),
                self._key(pid, "block"),
                self._key(pid, "health"),
                *disabled,
            )
        logger.info("provider_admin_reset", provider=pid)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except redis.RedisError:
            return False

    async def close(self) -> None:
        await self._client.aclose()


@contextmanager
def _store_errors(operation: str, provider: str) -> Iterator[None]:
    try:
        yield
    except redis.RedisError as exc:
        logger.error("quota_store_unavailable", operation=operation, provider=provider, error=str(exc))
        raise RoutingInfrastructureError(f"Quota store {operation} failed: {exc}") from exc


def _text(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


def _int(value: Any) -> int:
    return int(value) if value not in (None, "") else 0


def _opt_int(value: Any) -> int | None:
    return int(value) if value not in (None, "") else None


def _future(deadline: Any, now_ms: int) -> int | None:
    value = _opt_int(deadline)
    return value if value is not None and value > now_ms else None
