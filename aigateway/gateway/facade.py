"""Gateway facade: the single entry point for capability calls.

Every call follows the same sequence:
  1. resolve provider + model (option -> caller default -> system default)
  2. resolve the adapter (unknown capability / missing credentials fail here)
  3. quota check for metered capabilities (QuotaExceeded when denied)
  4. invoke the adapter through the circuit breaker keyed "provider:operation"
  5. record usage with tokens, cost and latency, then return the result

Errors from the breaker or the adapter propagate unchanged. Output already
streamed before a mid-stream failure is not revoked.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar, Union

import httpx

from aigateway.core.config import Settings, settings
from aigateway.core.exceptions import InvalidRequest
from aigateway.core.metrics import PROVIDER_CALLS, PROVIDER_LATENCY
from aigateway.gateway.adapters import adapters_from_settings
from aigateway.gateway.adapters.base import BaseProviderAdapter
from aigateway.gateway.catalog import ModelCatalog
from aigateway.gateway.circuit_breaker import CircuitBreaker
from aigateway.gateway.defaults import ModelResolver, Target
from aigateway.gateway.ledger import InMemoryUsageLedger, UsageLedger
from aigateway.gateway.media import MediaKind, load_binary
from aigateway.gateway.model_selector import ModelSelector
from aigateway.gateway.operations import wait_for_operation
from aigateway.gateway.rate_limiter import QuotaEnforcer
from aigateway.gateway.registry import ProviderRegistry
from aigateway.gateway.store import KeyValueStore, create_store
from aigateway.gateway.types import (
    BinaryInput,
    Caller,
    Capability,
    ChatResult,
    MediaAsset,
    ModelInfo,
    QuotaAction,
    QuotaCheck,
    RequestOptions,
    StreamCallback,
    TranscriptionResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Raw bytes, a file path, a data URL or an already built BinaryInput
BinarySource = Union[BinaryInput, bytes, str, Path]

# Capability -> quota action; embeddings are unmetered
METERED_ACTIONS: dict[Capability, QuotaAction] = {
    Capability.CHAT: QuotaAction.MESSAGES,
    Capability.IMAGE_GENERATION: QuotaAction.IMAGES,
    Capability.VIDEO_GENERATION: QuotaAction.VIDEOS,
    Capability.SPEECH_TO_TEXT: QuotaAction.AUDIOS,
    Capability.TEXT_TO_SPEECH: QuotaAction.AUDIOS,
    Capability.VISION: QuotaAction.FILE_ANALYSIS,
}


@dataclass
class AgainSuggestion:
    tag: str
    eligible: list[ModelInfo]
    predicted: ModelInfo | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "eligible": [m.to_dict() for m in self.eligible],
            "predicted": self.predicted.to_dict() if self.predicted else None,
        }


class AiGateway:
    """Uniform async interface over every registered provider.

    Usage:
        gateway = AiGateway.from_settings()
        result = await gateway.chat([{"role": "user", "content": "Hi"}], caller=Caller("42", Tier.PRO))
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        breaker: CircuitBreaker,
        quota: QuotaEnforcer,
        catalog: ModelCatalog,
        resolver: ModelResolver | None = None,
        selector: ModelSelector | None = None,
        config: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.breaker = breaker
        self.quota = quota
        self.catalog = catalog
        self.resolver = resolver or ModelResolver(registry, catalog)
        self.selector = selector or ModelSelector(catalog)
        self.config = config or settings
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        config: Settings | None = None,
        store: KeyValueStore | None = None,
        ledger: UsageLedger | None = None,
        catalog: ModelCatalog | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> AiGateway:
        """Wire a gateway from settings; store and ledger default to in-process ones."""
        config = config or settings
        store = store or create_store(config.redis_url)
        catalog = catalog or ModelCatalog.default()
        registry = ProviderRegistry(adapters_from_settings(config, catalog=catalog, transport=transport))
        return cls(
            registry=registry,
            breaker=CircuitBreaker(
                store,
                failure_threshold=config.circuit_failure_threshold,
                success_threshold=config.circuit_success_threshold,
                timeout=config.circuit_timeout,
                half_open_max_calls=config.circuit_half_open_max_calls,
                state_ttl=config.circuit_state_ttl,
                counter_ttl=config.circuit_counter_ttl,
            ),
            quota=QuotaEnforcer(
                ledger or InMemoryUsageLedger(), store, limits=config.rate_limits, cache_ttl=config.limits_cache_ttl
            ),
            catalog=catalog,
            resolver=ModelResolver(registry, catalog, config.default_provider, config.default_models),
            selector=ModelSelector(catalog, config.min_model_rating),
            config=config,
        )

    # ------------------------------------------------------------------
    # Core pipeline
    # ------------------------------------------------------------------

    async def _invoke(
        self,
        capability: Capability,
        operation: str,
        options: RequestOptions | None,
        caller: Caller | None,
        call: Callable[[BaseProviderAdapter, RequestOptions], Awaitable[T]],
        usage: Callable[[T, Target], dict[str, Any]] | None = None,
    ) -> T:
        options = options or RequestOptions()
        target = self.resolver.resolve(capability, options, caller)
        adapter = self.registry.resolve(target.provider, capability)
        call_options = replace(options, provider=adapter.name, model=target.model, model_id=None)

        action = METERED_ACTIONS.get(capability)
        if action is not None and caller is not None:
            await self.quota.enforce(caller, action)

        service_id = f"{adapter.name}:{operation}"
        start = time.monotonic()
        try:
            result = await self.breaker.execute(lambda: call(adapter, call_options), service_id)
        except Exception:
            PROVIDER_CALLS.labels(provider=adapter.name, operation=operation, outcome="error").inc()
            raise
        elapsed = time.monotonic() - start

        PROVIDER_CALLS.labels(provider=adapter.name, operation=operation, outcome="success").inc()
        PROVIDER_LATENCY.labels(provider=adapter.name, operation=operation).observe(elapsed)

        if action is not None and caller is not None:
            metadata = {"provider": adapter.name, "model": target.model, "latency_ms": int(elapsed * 1000)}
            if usage is not None:
                metadata.update(usage(result, target))
            await self.quota.record_usage(caller, action, metadata)

        logger.debug("%s via %s/%s in %.0fms", operation, adapter.name, target.model, elapsed * 1000)
        return result

    @staticmethod
    def _chat_usage(result: ChatResult, target: Target) -> dict[str, Any]:
        tokens = result.usage.total_tokens
        if target.info is not None:
            cost = target.info.calc_cost(result.usage.input_tokens, result.usage.output_tokens)
        else:
            cost = result.cost_usd
        return {"tokens": tokens, "cost": cost}

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def chat(
        self, messages: list[dict], options: RequestOptions | None = None, caller: Caller | None = None
    ) -> ChatResult:
        _require_messages(messages)
        return await self._invoke(
            Capability.CHAT,
            "chat",
            options,
            caller,
            lambda adapter, opts: adapter.chat(messages, opts),
            self._chat_usage,
        )

    async def chat_stream(
        self,
        messages: list[dict],
        callback: StreamCallback,
        options: RequestOptions | None = None,
        caller: Caller | None = None,
    ) -> ChatResult:
        _require_messages(messages)
        return await self._invoke(
            Capability.CHAT,
            "chat_stream",
            options,
            caller,
            lambda adapter, opts: adapter.chat_stream(messages, callback, opts),
            self._chat_usage,
        )

    # ------------------------------------------------------------------
    # Embeddings (unmetered)
    # ------------------------------------------------------------------

    async def embed(
        self, text: str, options: RequestOptions | None = None, caller: Caller | None = None
    ) -> list[float]:
        if not text:
            raise InvalidRequest("Text to embed is empty")
        return await self._invoke(
            Capability.EMBEDDING, "embedding", options, caller, lambda adapter, opts: adapter.embed(text, opts)
        )

    async def embed_batch(
        self, texts: list[str], options: RequestOptions | None = None, caller: Caller | None = None
    ) -> list[list[float]]:
        return await self._invoke(
            Capability.EMBEDDING, "embedding", options, caller, lambda adapter, opts: adapter.embed_batch(texts, opts)
        )

    # ------------------------------------------------------------------
    # Vision
    # ------------------------------------------------------------------

    async def analyze_image(
        self,
        image: BinarySource,
        prompt: str = "Describe this image in detail.",
        options: RequestOptions | None = None,
        caller: Caller | None = None,
    ) -> ChatResult:
        binary = load_binary(image, MediaKind.IMAGE)
        return await self._invoke(
            Capability.VISION,
            "vision",
            options,
            caller,
            lambda adapter, opts: adapter.explain_image(binary, prompt, opts),
            self._chat_usage,
        )

    async def extract_text_from_image(
        self, image: BinarySource, options: RequestOptions | None = None, caller: Caller | None = None
    ) -> ChatResult:
        binary = load_binary(image, MediaKind.IMAGE)
        return await self._invoke(
            Capability.VISION,
            "vision",
            options,
            caller,
            lambda adapter, opts: adapter.extract_text_from_image(binary, opts),
            self._chat_usage,
        )

    async def compare_images(
        self,
        image_a: BinarySource,
        image_b: BinarySource,
        options: RequestOptions | None = None,
        caller: Caller | None = None,
    ) -> ChatResult:
        first = load_binary(image_a, MediaKind.IMAGE)
        second = load_binary(image_b, MediaKind.IMAGE)
        return await self._invoke(
            Capability.VISION,
            "vision",
            options,
            caller,
            lambda adapter, opts: adapter.compare_images(first, second, opts),
            self._chat_usage,
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_image(
        self, prompt: str, options: RequestOptions | None = None, caller: Caller | None = None
    ) -> list[MediaAsset]:
        _require_prompt(prompt)
        return await self._invoke(
            Capability.IMAGE_GENERATION,
            "image_generation",
            options,
            caller,
            lambda adapter, opts: adapter.generate_image(prompt, opts),
            lambda assets, _target: {"count": len(assets)},
        )

    async def generate_video(
        self, prompt: str, options: RequestOptions | None = None, caller: Caller | None = None
    ) -> MediaAsset:
        """Submit a video job and wait for it under the video timeout budget."""
        _require_prompt(prompt)

        async def run(adapter: BaseProviderAdapter, opts: RequestOptions) -> MediaAsset:
            handle = await adapter.submit_video(prompt, opts)
            return await wait_for_operation(
                handle,
                adapter.poll_video,
                interval=self.config.video_poll_interval,
                max_attempts=self.config.video_poll_max_attempts,
                timeout=self.config.timeout_video,
                sleep=self._sleep,
            )

        return await self._invoke(Capability.VIDEO_GENERATION, "video_generation", options, caller, run)

    # ------------------------------------------------------------------
    # Speech
    # ------------------------------------------------------------------

    async def transcribe(
        self, audio: BinarySource, options: RequestOptions | None = None, caller: Caller | None = None
    ) -> TranscriptionResult:
        binary = load_binary(audio, MediaKind.AUDIO)
        return await self._invoke(
            Capability.SPEECH_TO_TEXT,
            "speech_to_text",
            options,
            caller,
            lambda adapter, opts: adapter.transcribe(binary, opts),
            lambda result, _target: {"duration": result.duration} if result.duration else {},
        )

    async def synthesize(
        self, text: str, options: RequestOptions | None = None, caller: Caller | None = None
    ) -> MediaAsset:
        _require_prompt(text)
        return await self._invoke(
            Capability.TEXT_TO_SPEECH,
            "text_to_speech",
            options,
            caller,
            lambda adapter, opts: adapter.synthesize(text, opts),
            lambda _asset, _target: {"characters": len(text)},
        )

    # ------------------------------------------------------------------
    # "Again", quotas, health
    # ------------------------------------------------------------------

    def again(self, topic: str | None, current_model_id: int | None, caller: Caller | None = None) -> AgainSuggestion:
        eligible, predicted = self.selector.again(topic, current_model_id, caller)
        return AgainSuggestion(self.selector.resolve_tag_from_topic(topic), eligible, predicted)

    async def get_caller_limits(self, caller: Caller) -> dict[str, QuotaCheck]:
        return await self.quota.get_caller_limits(caller)

    async def get_status(self) -> dict[str, Any]:
        """Aggregated health: every provider's snapshot plus every known circuit."""
        providers = await self.registry.get_status()
        return {
            "providers": {name: status.to_dict() for name, status in providers.items()},
            "capabilities": self.registry.capability_map(),
            "circuits": await self.breaker.get_all_states(),
        }


def _require_messages(messages: list[dict]) -> None:
    if not messages:
        raise InvalidRequest("At least one message is required")
    for message in messages:
        if "role" not in message or "content" not in message:
            raise InvalidRequest("Every message needs 'role' and 'content'")


def _require_prompt(prompt: str) -> None:
    if not prompt or not prompt.strip():
        raise InvalidRequest("Prompt is empty")

