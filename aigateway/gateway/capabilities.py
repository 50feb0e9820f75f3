"""Capability interfaces.

An adapter subclasses ProviderMetadata plus any subset of the capability
mixins below. The registry discovers what an adapter can do from
`capabilities`, which must match the mixins it implements.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from aigateway.gateway.types import (
    BinaryInput,
    Capability,
    ChatResult,
    MediaAsset,
    OperationHandle,
    OperationOutcome,
    ProviderStatus,
    RequestOptions,
    StreamCallback,
    TranscriptionResult,
)

Message = dict  # {"role": str, "content": str | list[dict]}


class ProviderMetadata(ABC):
    name: str
    capabilities: frozenset[Capability] = frozenset()
    default_models: dict[Capability, str] = {}

    @abstractmethod
    def is_available(self) -> bool:
        """True when the provider is configured (credential or base URL present)."""

    @abstractmethod
    async def get_status(self) -> ProviderStatus: ...

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


class ChatProvider(ABC):
    @abstractmethod
    async def chat(self, messages: list[Message], options: RequestOptions) -> ChatResult: ...

    @abstractmethod
    async def chat_stream(
        self, messages: list[Message], callback: StreamCallback, options: RequestOptions
    ) -> ChatResult:
        """Invoke `callback` once per fragment; return the content-only transcript."""


class EmbeddingProvider(ABC):
    @abstractmethod
    async def embed(self, text: str, options: RequestOptions) -> list[float]: ...

    @abstractmethod
    async def embed_batch(self, texts: list[str], options: RequestOptions) -> list[list[float]]: ...

    @abstractmethod
    def get_dimensions(self, model: str) -> int: ...


class VisionProvider(ABC):
    @abstractmethod
    async def explain_image(self, image: BinaryInput, prompt: str, options: RequestOptions) -> ChatResult: ...

    async def extract_text_from_image(self, image: BinaryInput, options: RequestOptions) -> ChatResult:
        return await self.explain_image(
            image,
            "Extract all text from this image. Return only the extracted text, preserving layout where possible.",
            options,
        )

    @abstractmethod
    async def compare_images(
        self, image_a: BinaryInput, image_b: BinaryInput, options: RequestOptions
    ) -> ChatResult: ...


class ImageGenerationProvider(ABC):
    @abstractmethod
    async def generate_image(self, prompt: str, options: RequestOptions) -> list[MediaAsset]: ...


class VideoGenerationProvider(ABC):
    """Long-running generation: submit once, then poll until ready or failed."""

    @abstractmethod
    async def submit_video(self, prompt: str, options: RequestOptions) -> OperationHandle: ...

    @abstractmethod
    async def poll_video(self, handle: OperationHandle) -> OperationOutcome: ...


class SpeechToTextProvider(ABC):
    @abstractmethod
    async def transcribe(self, audio: BinaryInput, options: RequestOptions) -> TranscriptionResult: ...


class TextToSpeechProvider(ABC):
    @abstractmethod
    async def synthesize(self, text: str, options: RequestOptions) -> MediaAsset: ...

    @abstractmethod
    def get_voices(self) -> list[str]: ...
