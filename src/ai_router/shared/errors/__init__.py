"""Global exception handlers — map routing errors to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
import structlog

from ai_router.domain.enums import ErrorCode
from ai_router.domain.exceptions import (
    AIProviderError,
    DomainError,
    RoutingInfrastructureError,
)

logger = structlog.get_logger(__name__)

_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.LIMIT_EXCEEDED: 503,
    ErrorCode.AUTH_ERROR: 502,
    ErrorCode.INVALID_RESPONSE: 502,
    ErrorCode.PROVIDER_ERROR: 502,
    ErrorCode.CONFIG_ERROR: 500,
}


def register_exception_handlers(app: FastAPI) -> None:
    """Register all domain→HTTP exception mappings."""

    @app.exception_handler(RequestValidationError)
    async def handle_validation(request: Request, exc: RequestValidationError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=422,
            content={
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": exc.errors(),
            },
        )

    @app.exception_handler(RoutingInfrastructureError)
    async def handle_infrastructure(
        request: Request, exc: RoutingInfrastructureError
    ) -> ORJSONResponse:
        logger.critical("routing_infrastructure_http", message=exc.raw_message)
        return ORJSONResponse(
            status_code=503,
            content={"code": exc.code, "message": exc.raw_message, "provider": exc.provider},
        )

    @app.exception_handler(AIProviderError)
    async def handle_provider(request: Request, exc: AIProviderError) -> ORJSONResponse:
        status = _STATUS_BY_CODE.get(exc.error_code, 502)
        logger.warning(
            "provider_error_http", code=exc.code, provider=exc.provider, status=status
        )
        return ORJSONResponse(
            status_code=status,
            content={"code": exc.code, "message": exc.raw_message, "provider": exc.provider},
        )

    @app.exception_handler(DomainError)
    async def handle_domain(request: Request, exc: DomainError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=400,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("unhandled_exception", error=str(exc))
        return ORJSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        )
