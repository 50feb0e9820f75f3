"""Model catalog: the set of models the gateway knows how to route to.

Each entry carries the capability tag it serves, ranking signals
(quality, rating), per-1M-token pricing and feature flags that adapters
consult for model quirks (fixed_temperature, max_completion_tokens,
reasoning).
"""

from __future__ import annotations

from typing import Any, Iterable

from aigateway.gateway.types import ModelInfo

# Pricing per 1M tokens
DEFAULT_MODELS: list[dict[str, Any]] = [
    # --- chat ---
    {"id": 1, "service": "Ollama", "name": "deepseek-r1:14b", "tag": "chat", "provider_model": "deepseek-r1:14b",
     "price_in": 0.092, "price_out": 0.46, "quality": 6, "rating": 0.5, "features": ["reasoning"]},
    {"id": 6, "service": "Ollama", "name": "mistral", "tag": "chat", "provider_model": "mistral:7b",
     "price_in": 0.095, "price_out": 0.475, "quality": 5, "rating": 0.0},
    {"id": 9, "service": "Groq", "name": "Llama 3.3 70b versatile", "tag": "chat",
     "provider_model": "llama-3.3-70b-versatile", "price_in": 0.59, "price_out": 0.79, "quality": 9, "rating": 1.0,
     "is_default": True},
    {"id": 10, "service": "Groq", "name": "DeepSeek R1 Distill 70b", "tag": "chat",
     "provider_model": "deepseek-r1-distill-llama-70b", "price_in": 0.75, "price_out": 0.99, "quality": 8,
     "rating": 0.8, "features": ["reasoning"]},
    {"id": 20, "service": "OpenAI", "name": "gpt-4.1", "tag": "chat", "provider_model": "gpt-4.1",
     "price_in": 2.00, "price_out": 8.00, "quality": 9, "rating": 0.9},
    {"id": 21, "service": "OpenAI", "name": "gpt-4.1-mini", "tag": "chat", "provider_model": "gpt-4.1-mini",
     "price_in": 0.40, "price_out": 1.60, "quality": 8, "rating": 0.8},
    {"id": 22, "service": "OpenAI", "name": "o3-mini", "tag": "chat", "provider_model": "o3-mini",
     "price_in": 1.10, "price_out": 4.40, "quality": 9, "rating": 0.7,
     "features": ["reasoning", "fixed_temperature", "max_completion_tokens"]},
    {"id": 30, "service": "Anthropic", "name": "Claude Sonnet 4", "tag": "chat",
     "provider_model": "claude-sonnet-4-20250514", "price_in": 3.00, "price_out": 15.00, "quality": 10,
     "rating": 0.9, "features": ["reasoning"]},
    {"id": 40, "service": "Google", "name": "Gemini 2.5 Flash", "tag": "chat", "provider_model": "gemini-2.5-flash",
     "price_in": 0.30, "price_out": 2.50, "quality": 9, "rating": 0.9},
    # --- vectorize ---
    {"id": 13, "service": "Ollama", "name": "bge-m3", "tag": "vectorize", "provider_model": "bge-m3",
     "price_in": 0.19, "price_out": 0.0, "quality": 6, "rating": 1.0, "selectable": False},
    {"id": 23, "service": "OpenAI", "name": "text-embedding-3-small", "tag": "vectorize",
     "provider_model": "text-embedding-3-small", "price_in": 0.02, "quality": 7, "rating": 1.0,
     "selectable": False},
    # --- pic2text ---
    {"id": 24, "service": "OpenAI", "name": "gpt-4.1 vision", "tag": "pic2text", "provider_model": "gpt-4.1",
     "price_in": 2.00, "price_out": 8.00, "quality": 9, "rating": 0.9},
    {"id": 41, "service": "Google", "name": "Gemini 2.5 Flash vision", "tag": "pic2text",
     "provider_model": "gemini-2.5-flash", "price_in": 0.30, "price_out": 2.50, "quality": 9, "rating": 0.8},
    {"id": 31, "service": "Anthropic", "name": "Claude Sonnet 4 vision", "tag": "pic2text",
     "provider_model": "claude-sonnet-4-20250514", "price_in": 3.00, "price_out": 15.00, "quality": 10,
     "rating": 0.8},
    # --- text2pic ---
    {"id": 25, "service": "OpenAI", "name": "gpt-image-1", "tag": "text2pic", "provider_model": "gpt-image-1",
     "price_in": 5.00, "price_out": 40.00, "quality": 9, "rating": 0.9},
    {"id": 42, "service": "Google", "name": "Imagen 4", "tag": "text2pic", "provider_model": "imagen-4.0-generate-001",
     "quality": 9, "rating": 0.8},
    # --- text2vid ---
    {"id": 43, "service": "Google", "name": "Veo 3", "tag": "text2vid", "provider_model": "veo-3.0-generate-001",
     "quality": 9, "rating": 0.8},
    # --- sound2text / text2sound ---
    {"id": 26, "service": "OpenAI", "name": "whisper-1", "tag": "sound2text", "provider_model": "whisper-1",
     "price_in": 6.00, "quality": 8, "rating": 0.9},
    {"id": 11, "service": "Groq", "name": "Whisper large v3", "tag": "sound2text",
     "provider_model": "whisper-large-v3", "price_in": 0.111, "quality": 8, "rating": 0.8},
    {"id": 27, "service": "OpenAI", "name": "tts-1", "tag": "text2sound", "provider_model": "tts-1",
     "price_in": 15.00, "quality": 7, "rating": 0.8},
    # --- offline test provider ---
    {"id": 99, "service": "Test", "name": "test-model", "tag": "chat", "provider_model": "test-model",
     "quality": 1, "rating": 0.5, "selectable": False},
]


class ModelCatalog:
    def __init__(self, models: Iterable[ModelInfo] = ()):
        self._by_id: dict[int, ModelInfo] = {}
        for model in models:
            self.add(model)

    @classmethod
    def from_dicts(cls, rows: Iterable[dict[str, Any]]) -> ModelCatalog:
        return cls(ModelInfo(**row) for row in rows)

    @classmethod
    def default(cls) -> ModelCatalog:
        return cls.from_dicts(DEFAULT_MODELS)

    def add(self, model: ModelInfo) -> None:
        self._by_id[model.id] = model

    def get(self, model_id: int) -> ModelInfo | None:
        return self._by_id.get(model_id)

    def find(self, provider: str, api_model: str) -> ModelInfo | None:
        """Look up by provider name and the model id the backend expects."""
        provider = provider.lower()
        for model in self._by_id.values():
            if model.provider == provider and api_model in (model.api_model, model.name):
                return model
        return None

    def by_tag(self, tag: str) -> list[ModelInfo]:
        return [m for m in self._by_id.values() if m.tag == tag and m.active]

    def default_for_tag(self, tag: str) -> ModelInfo | None:
        models = self.by_tag(tag)
        for model in models:
            if model.is_default:
                return model
        return None

    def features(self, provider: str, api_model: str) -> list[str] | None:
        """Catalog feature flags, or None when the model is unknown."""
        model = self.find(provider, api_model)
        return list(model.features) if model else None

    def provider_tags(self) -> dict[str, set[str]]:
        """Which capability tags each provider serves, from active models."""
        result: dict[str, set[str]] = {}
        for model in self._by_id.values():
            if model.active:
                result.setdefault(model.provider, set()).add(model.tag)
        return result

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self):
        return iter(self._by_id.values())
