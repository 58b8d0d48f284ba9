"""Data Transfer Objects — Pydantic models for API boundaries.

DTOs adapt between the HTTP surface and the routing core; the core itself
only deals in the frozen dataclasses of ``shared.providers.types``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ai_router.shared.providers.types import DailySummary, ExecutionAttempt, RoutedResult


# ═══════════════════════════════════════════════════════════════
#  Common
# ═══════════════════════════════════════════════════════════════
class ErrorResponse(BaseModel):
    code: str
    message: str
    provider: str | None = None


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "development"
    services: dict[str, str] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════
#  Generation
# ═══════════════════════════════════════════════════════════════
class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    system_prompt: str = Field(..., min_length=1)
    user_prompt: str = Field(..., min_length=1)
    response_schema: dict[str, Any] = Field(..., alias="schema")


class AttemptOutput(BaseModel):
    provider: str
    state: str
    error_code: str | None = None
    refusal: str | None = None
    repaired: bool = False
    latency_ms: float = 0.0

    @classmethod
    def from_attempt(cls, attempt: ExecutionAttempt) -> AttemptOutput:
        return cls(
            provider=attempt.provider_id,
            state=attempt.state.value,
            error_code=attempt.error.code if attempt.error else None,
            refusal=attempt.refusal.value if attempt.refusal else None,
            repaired=attempt.repaired,
            latency_ms=round(attempt.latency_ms, 1),
        )


class GenerateResponse(BaseModel):
    data: Any
    provider: str
    model: str | None = None
    tokens_used: int = 0
    attempts: list[AttemptOutput] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: RoutedResult) -> GenerateResponse:
        return cls(
            data=result.data,
            provider=result.provider,
            model=result.meta.model,
            tokens_used=result.meta.tokens_used,
            attempts=[AttemptOutput.from_attempt(a) for a in result.attempts],
        )


# ═══════════════════════════════════════════════════════════════
#  Providers
# ═══════════════════════════════════════════════════════════════
class ProviderSummaryResponse(BaseModel):
    provider_id: str
    enabled: bool
    status: str
    requests_used: int
    tokens_used: int
    requests_remaining: int
    tokens_remaining: int
    in_flight: int
    error_tally: int
    cooldown_until_ms: int | None = None
    blocked_until_ms: int | None = None
    remaining_requests_hint: int | None = None

    @classmethod
    def from_summary(cls, summary: DailySummary) -> ProviderSummaryResponse:
        health = summary.health
        return cls(
            provider_id=summary.provider_id,
            enabled=summary.enabled,
            status=health.label,
            requests_used=summary.requests_used,
            tokens_used=summary.tokens_used,
            requests_remaining=summary.requests_remaining,
            tokens_remaining=summary.tokens_remaining,
            in_flight=summary.in_flight,
            error_tally=health.error_tally,
            cooldown_until_ms=health.cooldown_until_ms,
            blocked_until_ms=health.blocked_until_ms,
            remaining_requests_hint=summary.remaining_requests_hint,
        )
