"""Domain-specific exception hierarchy.

All exceptions inherit from ``DomainError`` so callers can catch the entire
family in one clause while still discriminating on subclass.  Provider
failures all share ``AIProviderError`` and carry an ``ErrorCode`` from the
fixed taxonomy.
"""

from __future__ import annotations

from typing import Any

from ai_router.domain.enums import ErrorCode, ErrorSubtype

ROUTING_INFRASTRUCTURE = "routing-infrastructure"


class DomainError(Exception):
    """Base class for all domain-layer errors."""

    def __init__(self, message: str, *, code: str = "DOMAIN_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Provider errors ─────────────────────────────────────────
class AIProviderError(DomainError):
    """A classified failure attributed to one provider.

    Attributes:
        error_code:      Taxonomy member (``ErrorCode``).
        provider:        Provider identity the failure is attributed to.
        status:          Upstream HTTP status, when there was one.
        raw_message:     Upstream / human-readable message, unprefixed.
        subtype:         Optional refinement of PROVIDER_ERROR.
        invalid_payload: The offending payload for INVALID_RESPONSE.
    """

    def __init__(
        self,
        error_code: ErrorCode,
        provider: str,
        message: str,
        *,
        status: int | None = None,
        subtype: ErrorSubtype | None = None,
        invalid_payload: Any = None,
    ) -> None:
        self.error_code = error_code
        self.provider = provider
        self.status = status
        self.raw_message = message
        self.subtype = subtype
        self.invalid_payload = invalid_payload
        super().__init__(f"[{provider}] {message}", code=error_code.value)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, provider={self.provider!r}, "
            f"status={self.status!r}, message={self.raw_message!r})"
        )


class LimitExceededError(AIProviderError):
    def __init__(self, message: str = "No eligible provider available", *, provider: str = "router") -> None:
        super().__init__(ErrorCode.LIMIT_EXCEEDED, provider, message)


class AuthError(AIProviderError):
    def __init__(self, provider: str, message: str, *, status: int | None = None) -> None:
        super().__init__(ErrorCode.AUTH_ERROR, provider, message, status=status)


class InvalidResponseError(AIProviderError):
    def __init__(self, provider: str, message: str, *, invalid_payload: Any = None) -> None:
        super().__init__(
            ErrorCode.INVALID_RESPONSE, provider, message, invalid_payload=invalid_payload
        )


class ConfigurationError(AIProviderError):
    def __init__(self, provider: str, message: str) -> None:
        super().__init__(ErrorCode.CONFIG_ERROR, provider, message)


class ProviderError(AIProviderError):
    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status: int | None = None,
        subtype: ErrorSubtype | None = None,
    ) -> None:
        super().__init__(
            ErrorCode.PROVIDER_ERROR, provider, message, status=status, subtype=subtype
        )


class RoutingInfrastructureError(ProviderError):
    """The shared quota store could not be reached; fatal for the request."""

    def __init__(self, message: str) -> None:
        super().__init__(ROUTING_INFRASTRUCTURE, message, subtype=ErrorSubtype.TRANSPORT)


def build_provider_error(
    provider: str,
    message: str,
    *,
    status: int | None = None,
) -> AIProviderError:
    """Map an upstream HTTP status onto the error taxonomy."""
    if status in (401, 403):
        return AuthError(provider, message, status=status)
    if status == 402:
        return ProviderError(
            provider, message, status=status, subtype=ErrorSubtype.PAYMENT_REQUIRED
        )
    if status in (427, 429):
        return ProviderError(
            provider, message, status=status, subtype=ErrorSubtype.RATE_LIMITED
        )
    return ProviderError(provider, message, status=status)
