"""Provider router — the main entry-point for structured-generation calls.

Composes the provider directory, the shared quota store and the scorer
into one admission-controlled fallback chain.  Callers hand in prompts and
a schema; the router picks providers, reserves capacity, calls adapters,
repairs invalid output once, and records every outcome in the store.

Each attempt produces an explicit ``ExecutionAttempt``; only the terminal
failure of the whole request is raised to the caller.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

import pydantic
import structlog

from ai_router.domain.enums import AttemptState, ErrorCode
from ai_router.domain.exceptions import (
    AIProviderError,
    InvalidResponseError,
    LimitExceededError,
    RoutingInfrastructureError,
)
from ai_router.ports.outbound import ProviderAdapter, QuotaStorePort
from ai_router.shared.observability.metrics import (
    PROVIDER_ATTEMPTS,
    PROVIDER_LATENCY,
    REPAIRS_TOTAL,
    RESERVATION_REFUSALS,
    ROUTED_REQUESTS,
)
from ai_router.shared.providers.directory import ProviderDirectory
from ai_router.shared.providers.health import classify_exception
from ai_router.shared.providers.scorer import Scorer
from ai_router.shared.providers.summary import SummaryReporter
from ai_router.shared.providers.types import (
    DailySummary,
    ExecutionAttempt,
    ExecutionRequest,
    ExecutionResult,
    ProviderConfig,
    RepairRequest,
    RoutedResult,
    Validator,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class _RoutingTable:
    """Directory + adapters, swapped together as one reference."""

    directory: ProviderDirectory
    adapters: Mapping[str, ProviderAdapter]

    @property
    def routable(self) -> list[ProviderConfig]:
        return [p for p in self.directory.enabled if p.provider_id in self.adapters]


@dataclass
class _Outcome:
    attempt: ExecutionAttempt
    result: ExecutionResult | None = None
    data: Any = None


class Router:
    """Admission-controlled fallback chain over interchangeable providers.

    Usage::

        router = Router(directory, store, adapters)
        result = await router.execute(
            ExecutionRequest(system_prompt, user_prompt, schema=MyModel)
        )
        result.data, result.provider
    """

    def __init__(
        self,
        directory: ProviderDirectory,
        store: QuotaStorePort,
        adapters: Mapping[str, ProviderAdapter],
        *,
        scorer: Scorer | None = None,
        adapter_timeout_s: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._scorer = scorer or Scorer()
        self._timeout = adapter_timeout_s
        self._clock = clock
        self._summary = SummaryReporter(store, clock=clock)
        self._table = self._build_table(directory, adapters)

    # ── Directory management ─────────────────────────────────
    @property
    def directory(self) -> ProviderDirectory:
        return self._table.directory

    def replace_directory(
        self,
        directory: ProviderDirectory,
        adapters: Mapping[str, ProviderAdapter] | None = None,
    ) -> None:
        """Swap in a rebuilt directory (and optionally adapters) in one step."""
        table = self._table
        self._table = self._build_table(
            directory, adapters if adapters is not None else table.adapters
        )
        logger.info("router_directory_replaced", providers=list(directory.ids))

    @staticmethod
    def _build_table(
        directory: ProviderDirectory, adapters: Mapping[str, ProviderAdapter]
    ) -> _RoutingTable:
        missing = [p.provider_id for p in directory.enabled if p.provider_id not in adapters]
        if missing:
            logger.warning("provider_adapter_missing", providers=missing)
        return _RoutingTable(directory, dict(adapters))

    # ── Main entry-point ─────────────────────────────────────
    async def execute(self, request: ExecutionRequest) -> RoutedResult:
        """Route one request through the ranked fallback chain.

        Returns:
            The validated payload plus which provider served it.

        Raises:
            LimitExceededError: No provider was eligible or none was attempted.
            AIProviderError:    The last concrete failure once every candidate failed.
            RoutingInfrastructureError: The quota store was unreachable.
        """
        table = self._table
        schema, validate = _resolve_schema(request)
        now_ms = self._now_ms()

        providers = table.routable
        snapshots = await self._store.snapshot_many(providers, now_ms)
        ranking = self._scorer.rank(providers, snapshots, now_ms)
        logger.debug(
            "providers_ranked",
            candidates=ranking.provider_ids,
            excluded=dict(ranking.excluded),
            reserve_admitted=ranking.reserve_admitted,
        )

        if not ranking.candidates:
            ROUTED_REQUESTS.labels(status=ErrorCode.LIMIT_EXCEEDED.value).inc()
            logger.warning("no_available_providers", excluded=dict(ranking.excluded))
            raise LimitExceededError("No eligible provider available")

        attempts: list[ExecutionAttempt] = []
        last_error: AIProviderError | None = None

        for candidate in ranking.candidates:
            cfg = candidate.config
            outcome = await self._attempt(
                cfg, table.adapters[cfg.provider_id], request, schema, validate
            )
            attempts.append(outcome.attempt)

            if outcome.attempt.state == AttemptState.SUCCEEDED and outcome.result is not None:
                ROUTED_REQUESTS.labels(status="success").inc()
                if len(attempts) > 1:
                    logger.info(
                        "provider_failover_success",
                        provider=cfg.provider_id,
                        attempts=len(attempts),
                        failed_providers=[a.provider_id for a in attempts[:-1]],
                    )
                return RoutedResult(
                    data=outcome.data,
                    provider=cfg.provider_id,
                    meta=outcome.result.meta,
                    attempts=tuple(attempts),
                )
            if outcome.attempt.error is not None:
                last_error = outcome.attempt.error

        terminal = last_error or LimitExceededError("Every eligible provider refused the reservation")
        ROUTED_REQUESTS.labels(status=terminal.code).inc()
        logger.warning(
            "routing_exhausted",
            code=terminal.code,
            attempts=[(a.provider_id, a.state.value) for a in attempts],
        )
        raise terminal

    # ── Provider-level attempt ───────────────────────────────
    async def _attempt(
        self,
        cfg: ProviderConfig,
        adapter: ProviderAdapter,
        request: ExecutionRequest,
        schema: dict[str, Any],
        validate: Validator | None,
    ) -> _Outcome:
        pid = cfg.provider_id
        attempt = ExecutionAttempt(provider_id=pid, started_at_ms=self._now_ms())
        outcome = _Outcome(attempt)
        log = logger.bind(provider=pid)

        reservation = await self._store.try_reserve(cfg, attempt.started_at_ms)
        if not reservation.granted or reservation.lease_token is None:
            attempt.advance(AttemptState.REFUSED)
            attempt.refusal = reservation.reason
            reason = reservation.reason.value if reservation.reason else "unknown"
            RESERVATION_REFUSALS.labels(provider=pid, reason=reason).inc()
            PROVIDER_ATTEMPTS.labels(provider=pid, outcome="refused").inc()
            log.info("provider_reservation_refused", reason=reason)
            return outcome

        attempt.advance(AttemptState.RESERVED)
        lease = reservation.lease_token
        settled = False
        start = time.monotonic()
        try:
            called = await self._call(
                pid,
                lambda: adapter.execute(request.system_prompt, request.user_prompt, schema),
                validate,
            )

            if (
                isinstance(called, AIProviderError)
                and called.error_code == ErrorCode.INVALID_RESPONSE
            ):
                attempt.advance(AttemptState.INVALID_RESPONSE)
                if adapter.supports_repair:
                    attempt.advance(AttemptState.REPAIRING)
                    attempt.repaired = True
                    log.info("provider_response_repair", reason=called.raw_message)
                    repair = RepairRequest(
                        system_prompt=request.system_prompt,
                        user_prompt=request.user_prompt,
                        schema=schema,
                        invalid_payload=called.invalid_payload,
                        reason=called,
                    )
                    called = await self._call(
                        pid, lambda: adapter.repair_invalid_response(repair), validate
                    )
                    REPAIRS_TOTAL.labels(
                        provider=pid,
                        outcome="failure" if isinstance(called, AIProviderError) else "success",
                    ).inc()

            attempt.latency_ms = (time.monotonic() - start) * 1000
            PROVIDER_LATENCY.labels(provider=pid).observe(attempt.latency_ms / 1000)

            if isinstance(called, AIProviderError):
                error = called
                attempt.advance(AttemptState.FAILED)
                attempt.error = error
                now_ms = self._now_ms()
                await self._store.release(cfg, lease, now_ms)
                settled = True
                await self._store.apply_failure(cfg, error, now_ms)
                PROVIDER_ATTEMPTS.labels(provider=pid, outcome=error.code).inc()
                log.warning(
                    "provider_attempt_failed",
                    code=error.code,
                    status=error.status,
                    error=error.raw_message,
                    latency_ms=round(attempt.latency_ms, 1),
                )
                return outcome

            result, data = called
            attempt.advance(AttemptState.SUCCEEDED)
            attempt.remaining_requests_hint = result.meta.remaining_requests
            now_ms = self._now_ms()
            await self._store.commit(cfg, lease, result.meta.tokens_used, now_ms)
            settled = True
            await self._store.apply_success_signal(cfg, result.meta, now_ms)
            PROVIDER_ATTEMPTS.labels(provider=pid, outcome="success").inc()
            log.info(
                "provider_request_success",
                latency_ms=round(attempt.latency_ms, 1),
                tokens=result.meta.tokens_used,
                repaired=attempt.repaired,
            )
            outcome.result, outcome.data = result, data
            return outcome
        finally:
            if not settled:
                await self._release_quietly(cfg, lease)

    async def _call(
        self,
        provider: str,
        invoke: Callable[[], Awaitable[ExecutionResult]],
        validate: Validator | None,
    ) -> tuple[ExecutionResult, Any] | AIProviderError:
        """Run one adapter call (bounded by the timeout) and validate it.

        Returns ``(result, data)`` on success and the classified error otherwise.
        """
        try:
            result = await asyncio.wait_for(invoke(), timeout=self._timeout)
        except Exception as exc:
            return classify_exception(provider, exc)

        if not isinstance(result, ExecutionResult):
            return InvalidResponseError(
                provider, "Adapter returned no result", invalid_payload=result
            )
        if validate is None:
            return result, result.data
        try:
            validated = validate(result.data)
        except Exception as exc:
            return InvalidResponseError(
                provider, f"Validation failed: {exc}", invalid_payload=result.data
            )
        return result, result.data if validated is None else validated

    async def _release_quietly(self, cfg: ProviderConfig, lease: str) -> None:
        """Release on abnormal exit (cancellation, store failure mid-attempt)."""
        try:
            await asyncio.shield(self._store.release(cfg, lease, self._now_ms()))
        except RoutingInfrastructureError as exc:
            logger.error(
                "lease_release_failed",
                provider=cfg.provider_id,
                error=exc.raw_message,
                note="lease expires on its own",
            )

    # ── Observation / admin ──────────────────────────────────
    async def get_daily_summary(self) -> dict[str, DailySummary]:
        return await self._summary.daily_summary(self._table.directory)

    async def reset_provider(self, provider_id: str) -> bool:
        cfg = self._table.directory.get(provider_id)
        if cfg is None:
            return False
        await self._store.reset_provider(cfg)
        return True

    async def close(self) -> None:
        for adapter in self._table.adapters.values():
            await adapter.close()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)


def _resolve_schema(request: ExecutionRequest) -> tuple[dict[str, Any], Validator | None]:
    schema = request.schema
    if isinstance(schema, type) and issubclass(schema, pydantic.BaseModel):
        return schema.model_json_schema(), request.validate or schema.model_validate
    if not isinstance(schema, dict):
        raise TypeError("schema must be a JSON-schema dict or a pydantic model class")
    return schema, request.validate
