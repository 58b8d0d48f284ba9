"""Domain enumerations for the provider router."""

from __future__ import annotations

import enum


class ErrorCode(str, enum.Enum):
    """Fixed taxonomy of routing / provider failures."""

    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    AUTH_ERROR = "AUTH_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    CONFIG_ERROR = "CONFIG_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"


class ErrorSubtype(str, enum.Enum):
    """Finer-grained flavour of a PROVIDER_ERROR."""

    RATE_LIMITED = "rate_limited"
    PAYMENT_REQUIRED = "payment_required"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"


class RefusalReason(str, enum.Enum):
    """Why the quota store refused a reservation."""

    DISABLED = "disabled"
    BLOCK = "block"
    COOLDOWN = "cooldown"
    BUDGET = "budget"
    RATE = "rate"
    CONCURRENCY = "concurrency"


class FailureAction(str, enum.Enum):
    """What the store does to a provider's health state after a failure."""

    NONE = "none"
    COOLDOWN = "cooldown"
    BLOCK = "block"
    DISABLE = "disable"


class AttemptState(str, enum.Enum):
    """Lifecycle of a single provider attempt.

    PENDING → RESERVED | REFUSED
    RESERVED → SUCCEEDED | INVALID_RESPONSE | FAILED
    INVALID_RESPONSE → REPAIRING → SUCCEEDED | FAILED
    """

    PENDING = "PENDING"
    RESERVED = "RESERVED"
    REFUSED = "REFUSED"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    REPAIRING = "REPAIRING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (AttemptState.SUCCEEDED, AttemptState.FAILED, AttemptState.REFUSED)

    def can_transition_to(self, target: AttemptState) -> bool:
        return target in _ATTEMPT_TRANSITIONS.get(self, set())


_ATTEMPT_TRANSITIONS: dict[AttemptState, set[AttemptState]] = {
    AttemptState.PENDING: {AttemptState.RESERVED, AttemptState.REFUSED},
    AttemptState.RESERVED: {
        AttemptState.SUCCEEDED,
        AttemptState.INVALID_RESPONSE,
        AttemptState.FAILED,
    },
    AttemptState.INVALID_RESPONSE: {AttemptState.REPAIRING, AttemptState.FAILED},
    AttemptState.REPAIRING: {AttemptState.SUCCEEDED, AttemptState.FAILED},
}
