"""Provider + model resolution.

Precedence: explicit request option (model_id, or provider/model) ->
caller default -> system default. The system default is the configured
"provider:model" for the capability, then the catalog's default model for
the capability tag when its provider is available, then the default
provider with its own default model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from aigateway.core.config import settings
from aigateway.core.exceptions import InvalidRequest
from aigateway.gateway.catalog import ModelCatalog
from aigateway.gateway.registry import ProviderRegistry
from aigateway.gateway.types import CAPABILITY_TAGS, Caller, Capability, ModelInfo, RequestOptions

logger = logging.getLogger(__name__)


@dataclass
class Target:
    provider: str
    model: str
    info: ModelInfo | None = None
    source: str = ""  # option | caller | system


class ModelResolver:
    def __init__(
        self,
        registry: ProviderRegistry,
        catalog: ModelCatalog,
        default_provider: str | None = None,
        default_models: dict[str, str] | None = None,
    ):
        self.registry = registry
        self.catalog = catalog
        self.default_provider = default_provider or settings.default_provider
        self.default_models = default_models if default_models is not None else settings.default_models

    def resolve(self, capability: Capability, options: RequestOptions, caller: Caller | None = None) -> Target:
        if options.model_id is not None:
            return self._from_catalog(options.model_id, "option")

        if options.provider or options.model:
            return self._from_explicit(capability, options)

        if caller is not None and capability.value in caller.default_models:
            return self._from_catalog(caller.default_models[capability.value], "caller")

        return self._system_default(capability)

    def _from_catalog(self, model_id: int, source: str) -> Target:
        info = self.catalog.get(model_id)
        if info is None or not info.active:
            raise InvalidRequest(f"Unknown or inactive model id {model_id}")
        return Target(provider=info.provider, model=info.api_model, info=info, source=source)

    def _from_explicit(self, capability: Capability, options: RequestOptions) -> Target:
        provider = options.provider.lower() if options.provider else None
        model = options.model

        if provider is None:
            match = next((m for m in self.catalog if model in (m.api_model, m.name)), None)
            provider = match.provider if match else self.default_provider
        if model is None:
            model = self.registry.get(provider).default_models.get(capability)
            if model is None:
                raise InvalidRequest(f"Provider '{provider}' has no default model for {capability.value}")

        return Target(provider=provider, model=model, info=self.catalog.find(provider, model), source="option")

    def _is_available(self, provider: str) -> bool:
        return provider in self.registry.names and self.registry.get(provider).is_available()

    def _system_default(self, capability: Capability) -> Target:
        configured = self.default_models.get(capability.value)
        if configured:
            provider, _, model = configured.partition(":")
            if not model:
                raise InvalidRequest(f"Default model for {capability.value} must be 'provider:model'")
            return Target(provider=provider, model=model, info=self.catalog.find(provider, model), source="system")

        info = self.catalog.default_for_tag(CAPABILITY_TAGS[capability])
        if info is not None and self._is_available(info.provider):
            return Target(provider=info.provider, model=info.api_model, info=info, source="system")

        adapter = self.registry.get(self.default_provider)
        model = adapter.default_models.get(capability)
        if model is None:
            raise InvalidRequest(f"No default model configured for {capability.value}")
        return Target(provider=adapter.name, model=model, info=self.catalog.find(adapter.name, model), source="system")
