"""Offline "test" provider.

Implements every capability with deterministic output and no network
access. It is the system default provider, so a freshly configured gateway
answers without any credentials.
"""

from __future__ import annotations

import hashlib
import struct

from aigateway.gateway.adapters.base import BaseProviderAdapter, prompt_of
from aigateway.gateway.capabilities import (
    ChatProvider,
    EmbeddingProvider,
    ImageGenerationProvider,
    Message,
    SpeechToTextProvider,
    TextToSpeechProvider,
    VideoGenerationProvider,
    VisionProvider,
)
from aigateway.gateway.media import MediaKind, to_data_url, validate_mime
from aigateway.gateway.streaming import TranscriptCollector
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
    TokenUsage,
    TranscriptionResult,
)

EMBEDDING_DIMENSIONS = 64

# 1x1 transparent PNG
_PNG_PIXEL = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)


class OfflineAdapter(
    BaseProviderAdapter,
    ChatProvider,
    EmbeddingProvider,
    VisionProvider,
    ImageGenerationProvider,
    VideoGenerationProvider,
    SpeechToTextProvider,
    TextToSpeechProvider,
):
    name = "test"
    requires_api_key = False
    capabilities = frozenset(Capability)
    default_models = {capability: "test-model" for capability in Capability}

    def __init__(self, video_ready_after: int = 1, **kwargs):
        super().__init__(**kwargs)
        self.video_ready_after = video_ready_after
        self._polls: dict[str, int] = {}

    def is_available(self) -> bool:
        return True

    async def get_status(self) -> ProviderStatus:
        return ProviderStatus(healthy=True, latency_ms=0, error_rate=0.0, active_connections=0)

    def _require_credentials(self) -> None:
        return None

    # --- chat ---

    def _answer(self, messages: list[Message], options: RequestOptions) -> tuple[str, str]:
        prompt = prompt_of(messages)
        reasoning = f"Considering the request: {prompt}" if options.reasoning else ""
        return f"Test response to: {prompt}", reasoning

    async def chat(self, messages: list[Message], options: RequestOptions) -> ChatResult:
        model = self._prepare(options, Capability.CHAT)
        content, reasoning = self._answer(messages, options)
        return ChatResult(
            content=content,
            provider=self.name,
            model=model,
            usage=TokenUsage(_count_tokens(prompt_of(messages)), _count_tokens(content)),
            reasoning=reasoning,
            finish_reason="stop",
        )

    async def chat_stream(
        self, messages: list[Message], callback: StreamCallback, options: RequestOptions
    ) -> ChatResult:
        model = self._prepare(options, Capability.CHAT)
        content, reasoning = self._answer(messages, options)
        collector = TranscriptCollector(callback)

        if reasoning:
            collector.thinking(reasoning)
        for word in content.split(" "):
            if options.cancelled:
                break
            collector.text(word if not collector.content else f" {word}")

        return ChatResult(
            content=collector.content,
            provider=self.name,
            model=model,
            usage=TokenUsage(_count_tokens(prompt_of(messages)), _count_tokens(collector.content)),
            reasoning=collector.reasoning,
            finish_reason="stop",
        )

    # --- embeddings ---

    async def embed(self, text: str, options: RequestOptions) -> list[float]:
        self._prepare(options, Capability.EMBEDDING)
        return _vector(text)

    async def embed_batch(self, texts: list[str], options: RequestOptions) -> list[list[float]]:
        self._prepare(options, Capability.EMBEDDING)
        return [_vector(t) for t in texts]

    def get_dimensions(self, model: str) -> int:
        return EMBEDDING_DIMENSIONS

    # --- vision ---

    async def explain_image(self, image: BinaryInput, prompt: str, options: RequestOptions) -> ChatResult:
        model = self._prepare(options, Capability.VISION)
        validate_mime(image, MediaKind.IMAGE)
        content = f"Test analysis of {image.mime_type} image ({len(image.data)} bytes): {prompt}"
        return ChatResult(content=content, provider=self.name, model=model, usage=TokenUsage(0, _count_tokens(content)))

    async def compare_images(self, image_a: BinaryInput, image_b: BinaryInput, options: RequestOptions) -> ChatResult:
        model = self._prepare(options, Capability.VISION)
        for image in (image_a, image_b):
            validate_mime(image, MediaKind.IMAGE)
        same = image_a.data == image_b.data
        content = "The images are identical." if same else "The images differ."
        return ChatResult(content=content, provider=self.name, model=model)

    # --- generation ---

    async def generate_image(self, prompt: str, options: RequestOptions) -> list[MediaAsset]:
        model = self._prepare(options, Capability.IMAGE_GENERATION)
        return [
            MediaAsset(
                url=to_data_url(_PNG_PIXEL, "image/png"),
                mime_type="image/png",
                revised_prompt=prompt,
                provider=self.name,
                model=model,
            )
            for _ in range(options.n)
        ]

    async def submit_video(self, prompt: str, options: RequestOptions) -> OperationHandle:
        model = self._prepare(options, Capability.VIDEO_GENERATION)
        operation_id = f"operations/test-{hashlib.sha1(prompt.encode()).hexdigest()[:12]}"
        self._polls[operation_id] = 0
        return OperationHandle(provider=self.name, model=model, operation_id=operation_id)

    async def poll_video(self, handle: OperationHandle) -> OperationOutcome:
        polls = self._polls.get(handle.operation_id, 0) + 1
        self._polls[handle.operation_id] = polls
        if polls < self.video_ready_after:
            return OperationOutcome.pending()
        self._polls.pop(handle.operation_id, None)
        return OperationOutcome.ready(
            MediaAsset(
                url=to_data_url(handle.operation_id.encode(), "video/mp4"),
                mime_type="video/mp4",
                duration=8,
                provider=self.name,
                model=handle.model,
            )
        )

    # --- speech ---

    async def transcribe(self, audio: BinaryInput, options: RequestOptions) -> TranscriptionResult:
        model = self._prepare(options, Capability.SPEECH_TO_TEXT)
        validate_mime(audio, MediaKind.AUDIO)
        return TranscriptionResult(
            text=f"Test transcription of {audio.filename or 'audio'} ({len(audio.data)} bytes)",
            language=options.language or "en",
            provider=self.name,
            model=model,
        )

    async def synthesize(self, text: str, options: RequestOptions) -> MediaAsset:
        model = self._prepare(options, Capability.TEXT_TO_SPEECH)
        return MediaAsset(
            url=to_data_url(text.encode(), "audio/mpeg"),
            mime_type="audio/mpeg",
            provider=self.name,
            model=model,
        )

    def get_voices(self) -> list[str]:
        return ["test-voice"]


def _count_tokens(text: str) -> int:
    return len(text.split())


def _vector(text: str) -> list[float]:
    """Deterministic unit-range vector derived from the text hash."""
    digest = b""
    counter = 0
    while len(digest) < EMBEDDING_DIMENSIONS * 4:
        digest += hashlib.sha256(f"{counter}:{text}".encode()).digest()
        counter += 1
    values = struct.unpack(f"<{EMBEDDING_DIMENSIONS}I", digest[: EMBEDDING_DIMENSIONS * 4])
    return [v / 0xFFFFFFFF * 2 - 1 for v in values]
