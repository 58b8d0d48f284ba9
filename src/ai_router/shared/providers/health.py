"""Failure classification and the health policy that follows from it.

Turns whatever an adapter raised into a classified ``AIProviderError`` and
decides what that failure does to the provider's shared health state:

    AUTH_ERROR / CONFIG_ERROR       → DISABLE  (until credentials / config change)
    HTTP 402 (payment required)     → BLOCK    (payment_required_block_seconds)
    HTTP 427 / 429 (rate limited)   → COOLDOWN (rate_limit_cooldown_seconds)
    INVALID_RESPONSE                → NONE     (health tally only)
    anything else (incl. timeouts)  → COOLDOWN (provider_error_cooldown_seconds)
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass

import httpx
import pydantic

from ai_router.domain.enums import ErrorCode, ErrorSubtype, FailureAction
from ai_router.domain.exceptions import (
    AIProviderError,
    InvalidResponseError,
    ProviderError,
    build_provider_error,
)


@dataclass(frozen=True)
class FailureDecision:
    action: FailureAction
    duration_ms: int | None = None


@dataclass(frozen=True)
class FailurePolicy:
    rate_limit_cooldown_seconds: float = 60.0
    provider_error_cooldown_seconds: float = 30.0
    payment_required_block_seconds: float = 21_600.0

    def decide(self, error: AIProviderError) -> FailureDecision:
        code = error.error_code
        if code in (ErrorCode.AUTH_ERROR, ErrorCode.CONFIG_ERROR):
            return FailureDecision(FailureAction.DISABLE)
        if code == ErrorCode.INVALID_RESPONSE:
            return FailureDecision(FailureAction.NONE)
        if error.subtype == ErrorSubtype.PAYMENT_REQUIRED or error.status == 402:
            return FailureDecision(
                FailureAction.BLOCK, _ms(self.payment_required_block_seconds)
            )
        if (
            code == ErrorCode.LIMIT_EXCEEDED
            or error.subtype == ErrorSubtype.RATE_LIMITED
            or error.status in (427, 429)
        ):
            return FailureDecision(
                FailureAction.COOLDOWN, _ms(self.rate_limit_cooldown_seconds)
            )
        return FailureDecision(
            FailureAction.COOLDOWN, _ms(self.provider_error_cooldown_seconds)
        )


def classify_exception(provider: str, exc: BaseException) -> AIProviderError:
    """Normalise any adapter failure into the error taxonomy."""
    if isinstance(exc, AIProviderError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ProviderError(
            provider, str(exc) or "Provider call timed out", subtype=ErrorSubtype.TIMEOUT
        )
    if isinstance(exc, httpx.HTTPStatusError):
        return build_provider_error(
            provider,
            f"Upstream request failed with status {exc.response.status_code}",
            status=exc.response.status_code,
        )
    if isinstance(exc, httpx.TransportError):
        return ProviderError(
            provider, f"{type(exc).__name__}: {exc}", subtype=ErrorSubtype.TRANSPORT
        )
    if isinstance(exc, json.JSONDecodeError):
        return InvalidResponseError(provider, f"Non-JSON content: {exc.msg}", invalid_payload=exc.doc)
    if isinstance(exc, pydantic.ValidationError):
        return InvalidResponseError(provider, str(exc))
    return ProviderError(provider, f"{type(exc).__name__}: {exc}")


def _ms(seconds: float) -> int:
    return int(seconds * 1000)
