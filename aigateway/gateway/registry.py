"""Provider registry: capability -> adapters, resolved once at startup."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from aigateway.core.exceptions import CredentialsMissing, InvalidRequest
from aigateway.gateway.adapters.base import BaseProviderAdapter
from aigateway.gateway.types import Capability, ProviderStatus

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self, adapters: Iterable[BaseProviderAdapter] = ()):
        self._adapters: dict[str, BaseProviderAdapter] = {}
        self._by_capability: dict[Capability, list[str]] = {c: [] for c in Capability}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: BaseProviderAdapter) -> None:
        if adapter.name in self._adapters:
            for names in self._by_capability.values():
                if adapter.name in names:
                    names.remove(adapter.name)
        self._adapters[adapter.name] = adapter
        for capability in adapter.capabilities:
            self._by_capability[capability].append(adapter.name)
        logger.debug(
            "Registered provider %s (%s, available=%s)",
            adapter.name,
            ", ".join(sorted(c.value for c in adapter.capabilities)),
            adapter.is_available(),
        )

    def get(self, name: str) -> BaseProviderAdapter:
        adapter = self._adapters.get(name.lower())
        if adapter is None:
            raise InvalidRequest(f"Unknown provider '{name}'", provider=name)
        return adapter

    def resolve(self, name: str, capability: Capability) -> BaseProviderAdapter:
        """Adapter for `name` that can serve `capability` right now."""
        adapter = self.get(name)
        if not adapter.supports(capability):
            raise InvalidRequest(f"Provider '{name}' does not support {capability.value}", provider=name)
        if not adapter.is_available():
            raise CredentialsMissing(adapter.name, adapter.env_var)
        return adapter

    def providers_for(self, capability: Capability, available_only: bool = True) -> list[BaseProviderAdapter]:
        adapters = [self._adapters[n] for n in self._by_capability[capability]]
        if available_only:
            adapters = [a for a in adapters if a.is_available()]
        return adapters

    def capability_map(self, available_only: bool = True) -> dict[str, list[str]]:
        return {
            capability.value: [a.name for a in self.providers_for(capability, available_only)]
            for capability in Capability
        }

    @property
    def names(self) -> list[str]:
        return list(self._adapters)

    async def get_status(self) -> dict[str, ProviderStatus]:
        """Health snapshot of every registered provider, checked concurrently."""
        adapters = list(self._adapters.values())
        results = await asyncio.gather(*(a.get_status() for a in adapters), return_exceptions=True)
        report: dict[str, ProviderStatus] = {}
        for adapter, result in zip(adapters, results):
            if isinstance(result, Exception):
                logger.warning("Status check for %s raised: %s", adapter.name, result)
                result = ProviderStatus(healthy=False, error=str(result))
            report[adapter.name] = result
        return report
