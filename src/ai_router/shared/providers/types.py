"""Core types for the provider routing / admission-control layer."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Callable

from ai_router.domain.enums import AttemptState, RefusalReason
from ai_router.domain.exceptions import AIProviderError

Validator = Callable[[Any], Any]


@dataclass(frozen=True)
class ProviderConfig:
    """Static configuration for a single provider.

    Attributes:
        provider_id:              Unique, lower-cased identity (e.g. "cloudflare").
        api_key:                  Credential handed to the adapter.
        model:                    Backend model identifier.
        priority:                 Base rank; direction set by ``ScoringPolicy``.
        daily_budget_requests:    Requests allowed per day (0 = none).
        daily_budget_tokens:      Tokens allowed per day (0 = none).
        max_concurrency:          In-flight requests allowed at once.
        max_requests_per_minute:  Throughput cap, scaled to the rate window.
        enabled:                  Disabled providers are never ranked.
        base_url:                 Optional override for OpenAI-compatible backends.
    """

    provider_id: str
    api_key: str = field(default="", repr=False)
    model: str = ""
    priority: float = 0
    daily_budget_requests: int = 0
    daily_budget_tokens: int = 0
    max_concurrency: int = 1
    max_requests_per_minute: int = 0
    enabled: bool = True
    base_url: str | None = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key.strip())

    @property
    def credential_fingerprint(self) -> str:
        """Short, non-reversible tag of the credential (safe to log / key on)."""
        return hashlib.sha256(self.api_key.encode("utf-8")).hexdigest()[:12]


# ── Adapter contract values ─────────────────────────────────
@dataclass(frozen=True)
class ExecutionMeta:
    """Metadata reported by an adapter alongside the parsed payload."""

    model: str | None = None
    remaining_requests: int | None = None
    remaining_tokens: int | None = None
    reset_at_unix_ms: int | None = None
    tokens_used: int = 0


@dataclass(frozen=True)
class ExecutionResult:
    data: Any
    meta: ExecutionMeta = field(default_factory=ExecutionMeta)


@dataclass(frozen=True)
class RepairRequest:
    """Everything an adapter needs to ask the backend to fix its own output."""

    system_prompt: str
    user_prompt: str
    schema: dict[str, Any]
    invalid_payload: Any
    reason: AIProviderError


# ── Quota store values ──────────────────────────────────────
@dataclass(frozen=True)
class Reservation:
    """Outcome of ``try_reserve``; ``lease_token`` is set only when granted."""

    granted: bool
    reason: RefusalReason | None = None
    lease_token: str | None = None


@dataclass(frozen=True)
class HealthState:
    """Suspension deadlines (epoch ms) and rolling error tally."""

    cooldown_until_ms: int | None = None
    blocked_until_ms: int | None = None
    disabled: bool = False
    error_tally: int = 0

    def refusal_at(self, now_ms: int) -> RefusalReason | None:
        if self.disabled:
            return RefusalReason.DISABLED
        if self.blocked_until_ms is not None and now_ms < self.blocked_until_ms:
            return RefusalReason.BLOCK
        if self.cooldown_until_ms is not None and now_ms < self.cooldown_until_ms:
            return RefusalReason.COOLDOWN
        return None

    @property
    def label(self) -> str:
        if self.disabled:
            return "disabled"
        if self.blocked_until_ms is not None:
            return "blocked"
        if self.cooldown_until_ms is not None:
            return "cooldown"
        return "degraded" if self.error_tally > 0 else "healthy"


@dataclass(frozen=True)
class QuotaSnapshot:
    """Read-only view of one provider's shared state at a point in time."""

    provider_id: str
    requests_used: int = 0
    tokens_used: int = 0
    rate_window_count: int = 0
    in_flight: int = 0
    health: HealthState = field(default_factory=HealthState)
    remaining_requests_hint: int | None = None
    remaining_tokens_hint: int | None = None
    hint_reset_at_ms: int | None = None


# ── Routing values ──────────────────────────────────────────
@dataclass(frozen=True)
class RankedCandidate:
    config: ProviderConfig
    score: float


@dataclass
class ExecutionAttempt:
    """Transient record of one provider attempt inside ``Router.execute``."""

    provider_id: str
    started_at_ms: int
    state: AttemptState = AttemptState.PENDING
    error: AIProviderError | None = None
    refusal: RefusalReason | None = None
    repaired: bool = False
    latency_ms: float = 0.0
    remaining_requests_hint: int | None = None

    def advance(self, target: AttemptState) -> None:
        if not self.state.can_transition_to(target):
            raise ValueError(f"Cannot move attempt from {self.state.value} to {target.value}")
        self.state = target


@dataclass(frozen=True)
class ExecutionRequest:
    """A structured-generation request.

    ``schema`` may be a JSON-schema dict or a pydantic model class; with a
    model class and no ``validate`` the model's ``model_validate`` is used.
    ``validate`` receives the parsed payload, raises on invalid data, and
    its return value (if not None) replaces the payload.
    """

    system_prompt: str
    user_prompt: str
    schema: Any
    validate: Validator | None = None


@dataclass(frozen=True)
class RoutedResult:
    data: Any
    provider: str
    meta: ExecutionMeta
    attempts: tuple[ExecutionAttempt, ...] = ()


@dataclass(frozen=True)
class DailySummary:
    """Per-provider daily usage, derived from a snapshot on demand."""

    provider_id: str
    enabled: bool
    requests_used: int
    tokens_used: int
    requests_remaining: int
    tokens_remaining: int
    in_flight: int
    health: HealthState
    remaining_requests_hint: int | None = None
