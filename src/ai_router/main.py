"""FastAPI application entry-point.

Assembles routers, middleware, exception handlers, and lifecycle hooks.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator, Mapping

import httpx
import structlog
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from ai_router.adapters.inbound.rest import (
    generate_router,
    health_router,
    providers_router,
)
from ai_router.adapters.outbound.llm import build_adapters
from ai_router.adapters.outbound.quota_store import InMemoryQuotaStore, RedisQuotaStore
from ai_router.config import QuotaBackend, Settings, get_settings
from ai_router.ports.outbound import ProviderAdapter, QuotaStorePort
from ai_router.shared.errors import register_exception_handlers
from ai_router.shared.middleware import (
    LoggingMiddleware,
    MetricsMiddleware,
    RequestIdMiddleware,
)
from ai_router.shared.observability import configure_logging
from ai_router.shared.providers.directory import DirectoryLoader
from ai_router.shared.providers.reloader import ProviderReloader
from ai_router.shared.providers.router import Router
from ai_router.shared.providers.scorer import Scorer

logger = structlog.get_logger(__name__)


def build_quota_store(settings: Settings) -> QuotaStorePort:
    """Explicit backend choice; an unreachable Redis never degrades to memory."""
    if settings.quota_backend == QuotaBackend.MEMORY:
        return InMemoryQuotaStore(
            policy=settings.quota_policy(),
            failure_policy=settings.failure_policy(),
        )
    return RedisQuotaStore.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        policy=settings.quota_policy(),
        failure_policy=settings.failure_policy(),
        key_prefix=settings.redis_key_prefix,
    )


def _configured_providers() -> str:
    return get_settings().ai_provider_config


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifecycle — startup & shutdown hooks."""
    settings: Settings = app.state.settings
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.is_production,
    )
    logger.info(
        "application_starting",
        env=settings.app_env.value,
        quota_backend=settings.quota_backend.value,
    )

    loader = DirectoryLoader()
    directory = loader.load(settings.ai_provider_config)
    store: QuotaStorePort = app.state.quota_store or build_quota_store(settings)
    http_client = httpx.AsyncClient(timeout=settings.adapter_timeout_seconds)
    injected: Mapping[str, ProviderAdapter] | None = app.state.adapters
    adapters = injected if injected is not None else build_adapters(directory, http_client)
    router = Router(
        directory,
        store,
        adapters,
        scorer=Scorer(
            scoring=settings.scoring_policy(),
            quota=settings.quota_policy(),
            reserve=settings.reserve_policy(),
        ),
        adapter_timeout_s=settings.adapter_timeout_seconds,
    )
    app.state.quota_store = store
    app.state.router = router
    app.state.provider_reloader = ProviderReloader(
        router,
        loader,
        source=_configured_providers,
        build_adapters=(
            None if injected is not None else lambda d: build_adapters(d, http_client)
        ),
    )

    try:
        yield
    finally:
        await router.close()
        await http_client.aclose()
        await store.close()
        logger.info("application_shutdown")


def create_app(
    settings: Settings | None = None,
    *,
    quota_store: QuotaStorePort | None = None,
    adapters: Mapping[str, ProviderAdapter] | None = None,
) -> FastAPI:
    """Application factory — creates a fully configured FastAPI instance.

    ``quota_store`` and ``adapters`` replace the settings-built ones
    (tests, embedding in another service).
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="AI Router",
        description=(
            "Admission-controlled routing of structured-generation requests "
            "across interchangeable language-model providers."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.quota_store = quota_store
    app.state.adapters = adapters

    # ── Middleware (order matters: last added = outermost) ────
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Exception handlers ───────────────────────────────────
    register_exception_handlers(app)

    # ── REST routers (versioned) ─────────────────────────────
    api_v1 = "/api/v1"
    app.include_router(health_router, prefix=api_v1)
    app.include_router(generate_router, prefix=api_v1)
    app.include_router(providers_router, prefix=api_v1)

    return app
