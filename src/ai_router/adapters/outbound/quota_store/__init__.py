"""Quota store adapters implementing ``QuotaStorePort``."""

from __future__ import annotations

from ai_router.adapters.outbound.quota_store.memory_store import InMemoryQuotaStore
from ai_router.adapters.outbound.quota_store.redis_store import RedisQuotaStore

__all__ = ["InMemoryQuotaStore", "RedisQuotaStore"]
