"""Provider adapters: protocol-level handling for each AI backend.

Each adapter translates capability calls into the backend's HTTP protocol
and returns normalized results.

Backend-specific behaviors:
  - openai: chat completions, `data:` SSE streaming, embeddings, images, speech
  - anthropic: Messages API, named-event streaming with content-block lifecycle
  - google: Gemini, Imagen, Veo (long-running operation), SAFETY -> BackendError
  - groq: OpenAI-compatible, <think> tags split across chunks
  - ollama: local models, NDJSON streaming with a `done` flag
  - test: deterministic offline provider
"""

from __future__ import annotations

from aigateway.core.config import Settings, settings
from aigateway.gateway.adapters.anthropic import AnthropicAdapter
from aigateway.gateway.adapters.base import BaseProviderAdapter
from aigateway.gateway.adapters.google import GoogleAdapter
from aigateway.gateway.adapters.groq import GroqAdapter
from aigateway.gateway.adapters.offline import OfflineAdapter
from aigateway.gateway.adapters.ollama import OllamaAdapter
from aigateway.gateway.adapters.openai import OpenAIAdapter

ADAPTER_REGISTRY: dict[str, type[BaseProviderAdapter]] = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "google": GoogleAdapter,
    "groq": GroqAdapter,
    "ollama": OllamaAdapter,
    "test": OfflineAdapter,
}


def get_adapter(provider: str, api_key: str = "", **kwargs) -> BaseProviderAdapter:
    """Factory: create an adapter instance for the given provider."""
    adapter_cls = ADAPTER_REGISTRY.get(provider)
    if adapter_cls is None:
        raise ValueError(f"No adapter registered for provider: {provider}")
    return adapter_cls(api_key=api_key, **kwargs)


def adapters_from_settings(config: Settings | None = None, **kwargs) -> list[BaseProviderAdapter]:
    """One adapter per known provider, configured from settings.

    Unconfigured providers are still built: they report is_available() False
    and raise CredentialsMissing when called.
    """
    config = config or settings
    kwargs.setdefault("config", config)
    return [
        get_adapter("openai", config.openai_api_key, base_url=config.openai_base_url, **kwargs),
        get_adapter("anthropic", config.anthropic_api_key, base_url=config.anthropic_base_url, **kwargs),
        get_adapter("google", config.google_gemini_api_key, base_url=config.google_base_url, **kwargs),
        get_adapter("groq", config.groq_api_key, base_url=config.groq_base_url, **kwargs),
        get_adapter("ollama", base_url=config.ollama_base_url, **kwargs),
        get_adapter("test", **kwargs),
    ]


__all__ = [
    "ADAPTER_REGISTRY",
    "AnthropicAdapter",
    "BaseProviderAdapter",
    "GoogleAdapter",
    "GroqAdapter",
    "OfflineAdapter",
    "OllamaAdapter",
    "OpenAIAdapter",
    "adapters_from_settings",
    "get_adapter",
]
