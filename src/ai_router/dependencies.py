"""Dependency providers — hand the lifespan-built components to route handlers.

Everything is constructed once in ``main.lifespan`` and stored on
``app.state``; these factories only look it up so that tests can swap in
their own store / adapters through ``create_app``.
"""

from __future__ import annotations

from fastapi import Request

from ai_router.config import Settings
from ai_router.ports.outbound import QuotaStorePort
from ai_router.shared.providers.reloader import ProviderReloader
from ai_router.shared.providers.router import Router


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_router(request: Request) -> Router:
    return request.app.state.router


def get_quota_store(request: Request) -> QuotaStorePort:
    return request.app.state.quota_store


def get_provider_reloader(request: Request) -> ProviderReloader:
    return request.app.state.provider_reloader
