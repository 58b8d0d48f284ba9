from __future__ import annotations

from ai_router.adapters.inbound.rest.routers import (
    generate_router,
    health_router,
    providers_router,
)

__all__ = ["generate_router", "health_router", "providers_router"]
