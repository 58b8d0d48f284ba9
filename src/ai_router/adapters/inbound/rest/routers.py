"""Health, Generation, Providers — REST routers."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import JSONResponse, Response

from ai_router.application.dtos import (
    GenerateRequest,
    GenerateResponse,
    HealthResponse,
    ProviderSummaryResponse,
)
from ai_router.config import Settings
from ai_router.dependencies import (
    get_app_settings,
    get_provider_reloader,
    get_quota_store,
    get_router,
)
from ai_router.ports.outbound import QuotaStorePort
from ai_router.shared.providers.reloader import ProviderReloader
from ai_router.shared.providers.router import Router
from ai_router.shared.providers.types import ExecutionRequest


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(get_app_settings),
    store: QuotaStorePort = Depends(get_quota_store),
    router: Router = Depends(get_router),
) -> Response:
    store_ok = await store.ping()
    resp = HealthResponse(
        status="ok" if store_ok else "degraded",
        environment=settings.app_env.value,
        services={
            "quota_store": "connected" if store_ok else "disconnected",
            "providers": str(len(router.directory.enabled)),
        },
    )
    # Store is critical: without it no request can be admitted
    return JSONResponse(
        status_code=status.HTTP_200_OK if store_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=resp.model_dump(),
    )


@health_router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# ═══════════════════════════════════════════════════════════════
#  Generation
# ═══════════════════════════════════════════════════════════════
generate_router = APIRouter(tags=["Generation"])


@generate_router.post("/generate", response_model=GenerateResponse)
async def generate(
    body: GenerateRequest,
    router: Router = Depends(get_router),
) -> GenerateResponse:
    """Route one structured-generation request through the provider chain."""
    result = await router.execute(
        ExecutionRequest(
            system_prompt=body.system_prompt,
            user_prompt=body.user_prompt,
            schema=body.response_schema,
        )
    )
    return GenerateResponse.from_result(result)


# ═══════════════════════════════════════════════════════════════
#  Providers
# ═══════════════════════════════════════════════════════════════
providers_router = APIRouter(prefix="/providers", tags=["Providers"])


@providers_router.get("/summary", response_model=list[ProviderSummaryResponse])
async def provider_summary(
    router: Router = Depends(get_router),
) -> list[ProviderSummaryResponse]:
    """Daily usage and health for every configured provider."""
    summary = await router.get_daily_summary()
    return [ProviderSummaryResponse.from_summary(s) for s in summary.values()]


@providers_router.post("/{provider_id}/reset")
async def reset_provider(
    provider_id: str,
    router: Router = Depends(get_router),
) -> dict[str, str]:
    """Admin: clear cooldown, block, disable and error tally for a provider."""
    if not await router.reset_provider(provider_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown provider: {provider_id}",
        )
    return {"status": "reset", "provider_id": provider_id.strip().lower()}


@providers_router.post("/reload")
async def reload_providers(
    reloader: ProviderReloader = Depends(get_provider_reloader),
    router: Router = Depends(get_router),
) -> dict[str, Any]:
    """Admin: re-read AI_PROVIDER_CONFIG and swap in the new provider set."""
    changed = reloader.reload()
    return {
        "status": "reloaded" if changed else "unchanged",
        "providers": list(router.directory.ids),
    }
