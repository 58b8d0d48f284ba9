"""Provider directory — the immutable list of configured providers.

Built once from the ``AI_PROVIDER_CONFIG`` JSON array and shared read-only
with the scorer and router.  When the configuration source changes a new
directory is built and swapped in whole; an existing directory is never
patched.
"""

from __future__ import annotations

import json
import threading
from types import MappingProxyType
from typing import Any, Iterable, Iterator

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ai_router.domain.exceptions import ConfigurationError
from ai_router.shared.providers.types import ProviderConfig

logger = structlog.get_logger(__name__)

_CONFIG_SOURCE = "config"


class ProviderConfigEntry(BaseModel):
    """One element of the provider configuration array (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", allow_inf_nan=False)

    service_name: str = Field(alias="serviceName")
    api_key: str = Field(alias="apiKey")
    model: str
    priority: float
    daily_budget_requests: int = Field(alias="dailyBudgetRequests", ge=0)
    daily_budget_tokens: int = Field(alias="dailyBudgetTokens", ge=0)
    max_concurrency: int = Field(alias="maxConcurrency", ge=0)
    max_requests_per_minute: int = Field(alias="maxRequestsPerMinute", ge=0)
    enabled: bool = True
    base_url: str | None = Field(default=None, alias="baseUrl")

    @field_validator("service_name")
    @classmethod
    def _normalise_identity(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("requires non-empty 'serviceName'")
        return v

    @field_validator("model")
    @classmethod
    def _require_model(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("requires non-empty 'model'")
        return v

    @field_validator("enabled", mode="before")
    @classmethod
    def _parse_enabled(cls, v: Any) -> bool:
        if v is None:
            return True
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() != "false"

    def to_config(self) -> ProviderConfig:
        return ProviderConfig(
            provider_id=self.service_name,
            api_key=self.api_key,
            model=self.model,
            priority=self.priority,
            daily_budget_requests=self.daily_budget_requests,
            daily_budget_tokens=self.daily_budget_tokens,
            max_concurrency=self.max_concurrency,
            max_requests_per_minute=self.max_requests_per_minute,
            enabled=self.enabled,
            base_url=self.base_url.rstrip("/") if self.base_url else None,
        )


class ProviderDirectory:
    """Immutable, identity-keyed collection of ``ProviderConfig``."""

    __slots__ = ("_providers", "_by_id")

    def __init__(self, providers: Iterable[ProviderConfig]) -> None:
        ordered = tuple(providers)
        by_id: dict[str, ProviderConfig] = {}
        for cfg in ordered:
            pid = cfg.provider_id.strip().lower()
            if pid != cfg.provider_id:
                raise ConfigurationError(
                    _CONFIG_SOURCE, f"Provider identity must be normalised: {cfg.provider_id!r}"
                )
            if pid in by_id:
                raise ConfigurationError(
                    _CONFIG_SOURCE, f"Duplicated provider serviceName in AI_PROVIDER_CONFIG: {pid}"
                )
            by_id[pid] = cfg
        self._providers = ordered
        self._by_id = MappingProxyType(by_id)

    # ── Construction ─────────────────────────────────────────
    @classmethod
    def from_entries(cls, entries: Iterable[Any]) -> ProviderDirectory:
        configs: list[ProviderConfig] = []
        for idx, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise ConfigurationError(
                    _CONFIG_SOURCE, "Each AI provider config entry must be an object"
                )
            try:
                configs.append(ProviderConfigEntry.model_validate(entry).to_config())
            except ValidationError as exc:
                name = entry.get("serviceName", f"#{idx}")
                raise ConfigurationError(
                    _CONFIG_SOURCE, f"Invalid AI provider config for {name!r}: {exc}"
                ) from exc
        return cls(configs)

    @classmethod
    def from_json(cls, raw: str) -> ProviderDirectory:
        if not raw or not raw.strip():
            raise ConfigurationError(_CONFIG_SOURCE, "Missing AI_PROVIDER_CONFIG")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(_CONFIG_SOURCE, "AI_PROVIDER_CONFIG must be valid JSON") from exc
        if not isinstance(parsed, list):
            raise ConfigurationError(_CONFIG_SOURCE, "AI_PROVIDER_CONFIG must be a JSON array")
        return cls.from_entries(parsed)

    # ── Lookup ───────────────────────────────────────────────
    def get(self, provider_id: str) -> ProviderConfig | None:
        return self._by_id.get(provider_id.strip().lower())

    def __contains__(self, provider_id: object) -> bool:
        return isinstance(provider_id, str) and self.get(provider_id) is not None

    def __iter__(self) -> Iterator[ProviderConfig]:
        return iter(self._providers)

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(p.provider_id for p in self._providers)

    @property
    def enabled(self) -> tuple[ProviderConfig, ...]:
        return tuple(p for p in self._providers if p.enabled)


class DirectoryLoader:
    """Caches the parsed directory by its raw source and rebuilds on change."""

    def __init__(self) -> None:
        self._raw: str | None = None
        self._directory: ProviderDirectory | None = None
        self._lock = threading.Lock()

    def load(self, raw: str) -> ProviderDirectory:
        with self._lock:
            if self._directory is not None and raw == self._raw:
                return self._directory
            directory = ProviderDirectory.from_json(raw)
            changed = self._directory is not None
            self._raw, self._directory = raw, directory
        logger.info(
            "provider_directory_loaded",
            providers=list(directory.ids),
            enabled=[p.provider_id for p in directory.enabled],
            reloaded=changed,
        )
        return directory
