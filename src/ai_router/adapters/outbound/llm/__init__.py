"""Provider adapters — structured JSON generation over OpenAI-style chat APIs.

Each adapter performs exactly one logical call per ``execute`` and raises
classified ``AIProviderError`` instances.  Retry across providers, quota
accounting and health live in the router, never here.
"""

from __future__ import annotations

import email.utils
import json
import math
import time
from typing import Any, Callable, Mapping

import httpx
import structlog

from ai_router.domain.exceptions import (
    AIProviderError,
    ConfigurationError,
    InvalidResponseError,
    build_provider_error,
)
from ai_router.ports.outbound import ProviderAdapter
from ai_router.shared.providers.directory import ProviderDirectory
from ai_router.shared.providers.types import (
    ExecutionMeta,
    ExecutionResult,
    ProviderConfig,
    RepairRequest,
)

logger = structlog.get_logger(__name__)

KNOWN_BASE_URLS: Mapping[str, str] = {
    "openai": "https://api.openai.com/v1",
    "groq": "https://api.groq.com/openai/v1",
    "openrouter": "https://openrouter.ai/api/v1",
}

CLOUDFLARE_PROVIDER = "cloudflare"
CLOUDFLARE_URL = (
    "https://api.cloudflare.com/client/v4/accounts/{account_id}/ai/v1/chat/completions"
)

_SCHEMA_NAME = "structured_response"
_JSON_ONLY_INSTRUCTION = "Respond ONLY with valid JSON and no additional text."
_EPOCH_MS_CUTOFF = 10_000_000_000
_NO_FALLBACK_STATUSES = frozenset({401, 402, 403, 427, 429})
# Keywords whose values map names to sub-schemas (not schemas themselves).
_SCHEMA_MAPS = frozenset({"properties", "$defs", "definitions", "patternProperties"})


class OpenAICompatibleAdapter(ProviderAdapter):
    """Chat-completions backend that honours ``response_format=json_schema``.

    Works for OpenAI itself and the many services exposing the same wire
    format (Groq, OpenRouter, self-hosted gateways via ``baseUrl``).
    """

    def __init__(
        self,
        config: ProviderConfig,
        client: httpx.AsyncClient,
        *,
        base_url: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._client = client
        self._base_url = (base_url or config.base_url or "").rstrip("/")
        self._clock = clock

    @property
    def provider_id(self) -> str:
        return self._config.provider_id

    async def execute(
        self, system_prompt: str, user_prompt: str, schema: dict[str, Any]
    ) -> ExecutionResult:
        token, model = self._require_config()
        response = await self._post(
            token, _chat_body(model, system_prompt, user_prompt, schema)
        )
        if response.is_error:
            raise self._upstream_error(response)
        return self._to_result(response, model)

    async def repair_invalid_response(self, request: RepairRequest) -> ExecutionResult:
        return await self.execute(
            request.system_prompt, build_repair_prompt(request), request.schema
        )

    # ── HTTP plumbing ────────────────────────────────────────
    def _url(self) -> str:
        if not self._base_url:
            raise ConfigurationError(
                self.provider_id,
                f"Missing baseUrl in AI_PROVIDER_CONFIG for service '{self.provider_id}'",
            )
        return f"{self._base_url}/chat/completions"

    def _token(self) -> str:
        return self._config.api_key.strip()

    def _require_config(self) -> tuple[str, str]:
        pid = self.provider_id
        if not self._config.has_credentials:
            raise ConfigurationError(
                pid, f"Missing apiKey in AI_PROVIDER_CONFIG for service '{pid}'"
            )
        if not self._config.model:
            raise ConfigurationError(
                pid, f"Missing model in AI_PROVIDER_CONFIG for service '{pid}'"
            )
        return self._token(), self._config.model

    async def _post(self, token: str, body: dict[str, Any]) -> httpx.Response:
        logger.debug(
            "provider_http_request",
            provider=self.provider_id,
            model=body.get("model"),
            structured="response_format" in body,
        )
        return await self._client.post(
            self._url(),
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            json=body,
        )

    def _upstream_error(self, response: httpx.Response) -> AIProviderError:
        message = _upstream_message(response) or (
            f"Request failed with status {response.status_code}"
        )
        return build_provider_error(self.provider_id, message, status=response.status_code)

    def _to_result(self, response: httpx.Response, model: str) -> ExecutionResult:
        pid = self.provider_id
        try:
            payload = response.json()
        except ValueError:
            raise InvalidResponseError(
                pid, "Response body is not JSON", invalid_payload=response.text
            ) from None

        content = _first_choice_content(payload)
        if content is None:
            raise InvalidResponseError(pid, "Provider returned an empty response", invalid_payload=payload)

        text = normalize_message_content(content)
        data = _parse_json(text)
        if data is None:
            raise InvalidResponseError(
                pid, f"Provider returned non-JSON content: {text[:500]}", invalid_payload=text
            )

        usage = payload.get("usage") if isinstance(payload, dict) else None
        tokens = _to_int(usage.get("total_tokens")) if isinstance(usage, dict) else None
        return ExecutionResult(
            data=data,
            meta=extract_quota_meta(
                response.headers,
                now_ms=int(self._clock() * 1000),
                model=(payload.get("model") if isinstance(payload, dict) else None) or model,
                tokens_used=tokens or 0,
            ),
        )


class CloudflareWorkersAIAdapter(OpenAICompatibleAdapter):
    """Cloudflare Workers AI through its OpenAI-compatible endpoint.

    The configured credential is ``accountId:apiToken``; a value without a
    separator is used as both.  Some Workers AI models reject structured
    output, so a failed structured request is retried once in plain JSON
    mode with an explicit instruction appended to the prompt.
    """

    def _account_and_token(self) -> tuple[str, str]:
        raw = self._config.api_key.strip()
        idx = raw.find(":")
        if 0 < idx < len(raw) - 1:
            return raw[:idx], raw[idx + 1 :]
        return raw, raw

    def _token(self) -> str:
        return self._account_and_token()[1]

    def _url(self) -> str:
        if self._base_url:
            return f"{self._base_url}/chat/completions"
        return CLOUDFLARE_URL.format(account_id=self._account_and_token()[0])

    async def execute(
        self, system_prompt: str, user_prompt: str, schema: dict[str, Any]
    ) -> ExecutionResult:
        token, model = self._require_config()
        response = await self._post(
            token, _chat_body(model, system_prompt, user_prompt, schema)
        )
        if response.is_error and response.status_code not in _NO_FALLBACK_STATUSES:
            logger.debug(
                "structured_output_fallback",
                provider=self.provider_id,
                status=response.status_code,
                payload=response.text[:500],
            )
            response = await self._post(
                token,
                _chat_body(
                    model, system_prompt, f"{user_prompt}\n\n{_JSON_ONLY_INSTRUCTION}", None
                ),
            )
        if response.is_error:
            error = self._upstream_error(response)
            logger.error(
                "provider_http_error",
                provider=self.provider_id,
                status=response.status_code,
                error=error.raw_message,
            )
            raise error
        return self._to_result(response, model)


# ── Factory ──────────────────────────────────────────────────
def build_adapters(
    directory: ProviderDirectory, client: httpx.AsyncClient
) -> dict[str, ProviderAdapter]:
    """Pick one adapter per configured provider.

    ``cloudflare`` gets the Workers AI adapter; any provider with a
    ``baseUrl`` or a well-known identity gets the OpenAI-compatible one.
    Providers matching neither are left out (and never routed to).
    """
    adapters: dict[str, ProviderAdapter] = {}
    for cfg in directory:
        pid = cfg.provider_id
        if pid == CLOUDFLARE_PROVIDER:
            adapters[pid] = CloudflareWorkersAIAdapter(cfg, client)
        elif cfg.base_url or pid in KNOWN_BASE_URLS:
            adapters[pid] = OpenAICompatibleAdapter(
                cfg, client, base_url=cfg.base_url or KNOWN_BASE_URLS[pid]
            )
        else:
            logger.warning("provider_adapter_unknown", provider=pid)
    return adapters


# ── Wire helpers ─────────────────────────────────────────────
def _chat_body(
    model: str,
    system_prompt: str,
    user_prompt: str,
    schema: dict[str, Any] | None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
    }
    if schema is not None:
        body["response_format"] = {
            "type": "json_schema",
            "json_schema": {
                "name": _SCHEMA_NAME,
                "strict": True,
                "schema": normalize_structured_schema(schema),
            },
        }
    return body


def normalize_structured_schema(schema: Any) -> Any:
    """Return a copy of ``schema`` that strict structured output accepts.

    Every object gets ``additionalProperties: false`` and lists all of its
    properties in ``required``; optional fields stay nullable through their
    own ``anyOf``.  ``default`` is dropped since every property is required.
    """
    if isinstance(schema, list):
        return [normalize_structured_schema(item) for item in schema]
    if not isinstance(schema, dict):
        return schema

    node: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "default":
            continue
        if key in _SCHEMA_MAPS and isinstance(value, dict):
            node[key] = {name: normalize_structured_schema(sub) for name, sub in value.items()}
        else:
            node[key] = normalize_structured_schema(value)

    if node.get("type") == "object" or "properties" in node:
        properties = node.get("properties")
        node["required"] = list(properties) if isinstance(properties, dict) else []
        node["additionalProperties"] = False
    return node


def build_repair_prompt(request: RepairRequest) -> str:
    payload = request.invalid_payload
    serialized = payload if isinstance(payload, str) else json.dumps(payload, default=str)
    return "\n".join(
        [
            request.user_prompt,
            "",
            "MANDATORY REPAIR:",
            "Fix the following JSON so it matches the schema and its length limits exactly.",
            "Do not change the meaning of the content; only fix format, lengths and missing fields.",
            "Respond ONLY with valid JSON, without markdown or extra text.",
            f"Validation failure reason: {request.reason.raw_message}",
            f"JSON to fix: {serialized}",
        ]
    )


def normalize_message_content(content: Any) -> str:
    """Flatten the shapes chat APIs use for message content into text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
            else:
                parts.append(json.dumps(item))
        joined = "".join(parts)
        if joined.strip():
            return joined
    if isinstance(content, dict):
        text = content.get("text")
        if isinstance(text, str) and text.strip():
            return text
        return json.dumps(content)
    return str(content)


def extract_quota_meta(
    headers: Mapping[str, str],
    *,
    now_ms: int,
    model: str | None = None,
    tokens_used: int = 0,
) -> ExecutionMeta:
    """Read the ``x-ratelimit-*`` family of headers into ``ExecutionMeta``."""
    return ExecutionMeta(
        model=model,
        remaining_requests=_to_int(
            headers.get("x-ratelimit-remaining-requests") or headers.get("x-ratelimit-remaining")
        ),
        remaining_tokens=_to_int(headers.get("x-ratelimit-remaining-tokens")),
        reset_at_unix_ms=parse_reset_header(
            headers.get("x-ratelimit-reset-requests") or headers.get("x-ratelimit-reset"),
            now_ms=now_ms,
        ),
        tokens_used=tokens_used,
    )


def parse_reset_header(value: str | None, *, now_ms: int) -> int | None:
    """Epoch ms if huge, seconds-from-now if numeric, otherwise an HTTP date."""
    if not value:
        return None
    number = _to_float(value)
    if number is not None:
        return int(number) if number > _EPOCH_MS_CUTOFF else now_ms + int(number * 1000)
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return int(parsed.timestamp() * 1000)


def _first_choice_content(payload: Any) -> Any:
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    return message.get("content") if isinstance(message, dict) else None


def _upstream_message(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str):
        return error
    errors = payload.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        message = errors[0].get("message")
        return message if isinstance(message, str) else None
    return None


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    for fence in ("```json", "```"):
        if fence in text:
            start = text.index(fence) + len(fence)
            end = text.find("```", start)
            if end == -1:
                continue
            try:
                return json.loads(text[start:end].strip())
            except json.JSONDecodeError:
                continue
    return None


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _to_int(value: Any) -> int | None:
    number = _to_float(value)
    return int(number) if number is not None else None


__all__ = [
    "CloudflareWorkersAIAdapter",
    "KNOWN_BASE_URLS",
    "OpenAICompatibleAdapter",
    "build_adapters",
    "build_repair_prompt",
    "extract_quota_meta",
    "normalize_message_content",
    "normalize_structured_schema",
    "parse_reset_header",
]
