"""Shared plumbing for provider adapters.

BaseProviderAdapter owns what every backend needs:
  - credential check before any network call (CredentialsMissing)
  - required-model check (InvalidRequest)
  - one httpx.AsyncClient per call, with an optional injected transport
  - translation of httpx failures and malformed bodies into BackendError /
    BackendTimeout, logged with provider, model and a truncated prompt
  - model quirk detection: catalog features first, name prefixes second
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator

import httpx

from aigateway.core.config import Settings, settings
from aigateway.core.exceptions import (
    BackendError,
    BackendTimeout,
    CredentialsMissing,
    GatewayError,
    InvalidRequest,
)
from aigateway.core.logging import truncate
from aigateway.gateway.capabilities import Message, ProviderMetadata
from aigateway.gateway.catalog import ModelCatalog
from aigateway.gateway.types import Capability, ProviderStatus, RequestOptions

logger = logging.getLogger(__name__)

# Models that only accept the default temperature and use max_completion_tokens
REASONING_MODEL_PREFIXES = ("o1", "o3", "o4", "gpt-5")


class BaseProviderAdapter(ProviderMetadata):
    """Base class for all provider adapters."""

    env_var: str = ""
    requires_api_key: bool = True
    status_path: str | None = None
    # Fallback pricing per 1M tokens when the catalog does not know the model
    pricing: dict[str, dict[str, float]] = {}

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "",
        catalog: ModelCatalog | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        config: Settings | None = None,
        **kwargs,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.catalog = catalog
        self.config = config or settings
        self._transport = transport

    # --- metadata ---

    def is_available(self) -> bool:
        if self.requires_api_key:
            return bool(self.api_key)
        return bool(self.base_url)

    async def get_status(self) -> ProviderStatus:
        if not self.is_available():
            return ProviderStatus(healthy=False, error=f"{self.name} is not configured")
        if self.status_path is None:
            return ProviderStatus(healthy=True)

        start = time.monotonic()
        try:
            async with self._client(10.0) as client:
                resp = await client.get(f"{self.base_url}{self.status_path}", headers=self._headers())
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("%s health check failed: %s", self.name, e)
            return ProviderStatus(healthy=False, error=str(e) or type(e).__name__)
        return ProviderStatus(healthy=True, latency_ms=int((time.monotonic() - start) * 1000))

    # --- request helpers ---

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def _require_credentials(self) -> None:
        if self.requires_api_key and not self.api_key:
            raise CredentialsMissing(self.name, self.env_var)
        if not self.requires_api_key and not self.base_url:
            raise CredentialsMissing(self.name, self.env_var)

    def _prepare(self, options: RequestOptions, capability: Capability) -> str:
        """Credential and model checks shared by every call. Returns the model."""
        self._require_credentials()
        if not self.supports(capability):
            raise InvalidRequest(f"Provider '{self.name}' does not support {capability.value}", provider=self.name)
        if not options.model:
            raise InvalidRequest(f"A model is required for {capability.value}", provider=self.name)
        return options.model

    async def _post_json(self, url: str, payload: dict[str, Any], timeout: float) -> dict[str, Any]:
        async with self._client(timeout) as client:
            resp = await client.post(url, json=payload, headers=self._headers())
        resp.raise_for_status()
        return resp.json()

    @contextmanager
    def _backend_call(self, model: str, prompt: str = "") -> Iterator[None]:
        """Translate anything the backend does wrong into BackendError/BackendTimeout."""
        try:
            yield
        except GatewayError:
            raise
        except httpx.TimeoutException as e:
            logger.warning("%s timeout for model %s | prompt: %s", self.name, model, truncate(prompt))
            raise BackendTimeout(f"{self.name} request timed out", provider=self.name) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = _error_detail(e.response)
            logger.error(
                "%s HTTP %d for model %s: %s | prompt: %s", self.name, status, model, detail, truncate(prompt)
            )
            raise BackendError(
                f"{self.name} returned HTTP {status}: {detail}",
                provider=self.name,
                status_code=status,
                error_code=str(status),
            ) from e
        except httpx.HTTPError as e:
            logger.error("%s transport error for model %s: %s | prompt: %s", self.name, model, e, truncate(prompt))
            raise BackendError(f"{self.name} request failed: {e}", provider=self.name) from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error("%s malformed response for model %s: %r | prompt: %s", self.name, model, e, truncate(prompt))
            raise BackendError(
                f"{self.name} returned a malformed response", provider=self.name, error_code="malformed_response"
            ) from e

    # --- model quirks ---

    def _catalog_features(self, model: str) -> list[str] | None:
        if self.catalog is None:
            return None
        return self.catalog.features(self.name, model)

    def _has_quirk(self, model: str, feature: str, prefixes: tuple[str, ...] = REASONING_MODEL_PREFIXES) -> bool:
        features = self._catalog_features(model)
        if features is not None:
            return feature in features
        return model.lower().startswith(prefixes)

    def _uses_fixed_temperature(self, model: str) -> bool:
        return self._has_quirk(model, "fixed_temperature")

    def _uses_max_completion_tokens(self, model: str) -> bool:
        return self._has_quirk(model, "max_completion_tokens")

    def _calc_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        if self.catalog is not None:
            info = self.catalog.find(self.name, model)
            if info is not None:
                return info.calc_cost(input_tokens, output_tokens)
        prices = self.pricing.get(model)
        if prices is None:
            return 0.0
        return round((input_tokens * prices["input"] + output_tokens * prices["output"]) / 1_000_000, 6)

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    def _timeout(self, kind: str) -> float:
        return getattr(self.config, f"timeout_{kind}")


def prompt_of(messages: list[Message]) -> str:
    """Text of the last user turn, for log context."""
    for message in reversed(messages):
        if message.get("role") == "user":
            content = message.get("content", "")
            if isinstance(content, str):
                return content
            return " ".join(p.get("text", "") for p in content if isinstance(p, dict))
    return ""


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return truncate(response.text, 300)
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)
    return truncate(str(body), 300)
