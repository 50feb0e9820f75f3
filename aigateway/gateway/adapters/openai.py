"""OpenAI adapter: chat, streaming, embeddings, vision, images, speech.

Streaming uses `data: {json}` lines terminated by `data: [DONE]`.
Reasoning models (o-series, gpt-5) reject a custom temperature and take
`max_completion_tokens`; the quirk checks in the base class decide.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from aigateway.core.exceptions import InvalidRequest
from aigateway.gateway.adapters.base import BaseProviderAdapter, prompt_of
from aigateway.gateway.capabilities import (
    ChatProvider,
    EmbeddingProvider,
    ImageGenerationProvider,
    Message,
    SpeechToTextProvider,
    TextToSpeechProvider,
    VisionProvider,
)
from aigateway.gateway.media import MediaKind, extension_for, to_data_url, validate_mime
from aigateway.gateway.streaming import TranscriptCollector, iter_sse_data_json
from aigateway.gateway.types import (
    BinaryInput,
    Capability,
    ChatResult,
    MediaAsset,
    RequestOptions,
    StreamCallback,
    TokenUsage,
    TranscriptionResult,
)

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

TTS_VOICES = ["alloy", "ash", "coral", "echo", "fable", "nova", "onyx", "sage", "shimmer"]

_AUDIO_MIME = {"mp3": "audio/mpeg", "opus": "audio/opus", "aac": "audio/aac", "flac": "audio/flac", "wav": "audio/wav"}


class DeltaHandler:
    """Routes OpenAI-style stream deltas into a transcript."""

    def __init__(self, collector: TranscriptCollector):
        self.collector = collector

    def feed(self, delta: dict[str, Any]) -> None:
        reasoning = delta.get("reasoning") or delta.get("reasoning_content")
        if reasoning:
            self.collector.thinking(reasoning)
        if delta.get("content"):
            self.content(delta["content"])

    def content(self, text: str) -> None:
        self.collector.text(text)

    def finish(self) -> None:
        """Flush anything held back across chunks."""


class OpenAIAdapter(
    BaseProviderAdapter,
    ChatProvider,
    EmbeddingProvider,
    VisionProvider,
    ImageGenerationProvider,
    SpeechToTextProvider,
    TextToSpeechProvider,
):
    """OpenAI REST API adapter."""

    name = "openai"
    env_var = "OPENAI_API_KEY"
    delta_handler = DeltaHandler
    status_path = "/models"
    capabilities = frozenset(
        {
            Capability.CHAT,
            Capability.EMBEDDING,
            Capability.VISION,
            Capability.IMAGE_GENERATION,
            Capability.SPEECH_TO_TEXT,
            Capability.TEXT_TO_SPEECH,
        }
    )
    default_models = {
        Capability.CHAT: "gpt-4.1-mini",
        Capability.EMBEDDING: "text-embedding-3-small",
        Capability.VISION: "gpt-4.1",
        Capability.IMAGE_GENERATION: "gpt-image-1",
        Capability.SPEECH_TO_TEXT: "whisper-1",
        Capability.TEXT_TO_SPEECH: "tts-1",
    }
    # Pricing per 1M tokens
    pricing = {
        "gpt-4o": {"input": 2.50, "output": 10.00},
        "gpt-4o-mini": {"input": 0.15, "output": 0.60},
        "gpt-4.1": {"input": 2.00, "output": 8.00},
        "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
        "gpt-4.1-nano": {"input": 0.10, "output": 0.40},
    }

    def __init__(self, api_key: str = "", base_url: str = "https://api.openai.com/v1", **kwargs):
        super().__init__(api_key=api_key, base_url=base_url, **kwargs)

    # --- chat ---

    def _chat_payload(self, messages: list[Message], options: RequestOptions, model: str) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": model, "messages": messages}
        reasoning_model = self._uses_fixed_temperature(model)

        if options.temperature is not None and not reasoning_model:
            payload["temperature"] = options.temperature
        if options.max_tokens:
            key = "max_completion_tokens" if self._uses_max_completion_tokens(model) else "max_tokens"
            payload[key] = options.max_tokens
        if options.reasoning and reasoning_model:
            payload["reasoning_effort"] = "high"
        payload.update(options.extra)
        return payload

    def _parse_chat(self, data: dict[str, Any], model: str) -> ChatResult:
        choice = data["choices"][0]
        message = choice["message"]
        usage = data.get("usage") or {}
        result = ChatResult(
            content=message.get("content") or "",
            provider=self.name,
            model=data.get("model", model),
            usage=TokenUsage(usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0)),
            reasoning=message.get("reasoning") or message.get("reasoning_content") or "",
            finish_reason=choice.get("finish_reason") or "",
        )
        result.cost_usd = self._calc_cost(model, result.usage.input_tokens, result.usage.output_tokens)
        return result

    async def chat(self, messages: list[Message], options: RequestOptions) -> ChatResult:
        model = self._prepare(options, Capability.CHAT)
        start = time.monotonic()

        with self._backend_call(model, prompt_of(messages)):
            data = await self._post_json(
                f"{self.base_url}/chat/completions",
                self._chat_payload(messages, options, model),
                self._timeout("text"),
            )
            result = self._parse_chat(data, model)

        result.latency_ms = self._elapsed_ms(start)
        return result

    async def chat_stream(
        self, messages: list[Message], callback: StreamCallback, options: RequestOptions
    ) -> ChatResult:
        model = self._prepare(options, Capability.CHAT)
        payload = self._chat_payload(messages, options, model)
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}

        collector = TranscriptCollector(callback)
        deltas = self.delta_handler(collector)
        usage = TokenUsage()
        finish_reason = ""
        start = time.monotonic()

        with self._backend_call(model, prompt_of(messages)):
            async with self._client(self._timeout("stream")) as client:
                async with client.stream(
                    "POST", f"{self.base_url}/chat/completions", json=payload, headers=self._headers()
                ) as resp:
                    if resp.is_error:
                        await resp.aread()
                    resp.raise_for_status()

                    async for chunk in iter_sse_data_json(resp):
                        if options.cancelled:
                            logger.info("%s stream cancelled by caller", self.name)
                            break
                        if chunk.get("usage"):
                            usage = TokenUsage(
                                chunk["usage"].get("prompt_tokens", 0), chunk["usage"].get("completion_tokens", 0)
                            )
                        for choice in chunk.get("choices") or []:
                            deltas.feed(choice.get("delta") or {})
                            finish_reason = choice.get("finish_reason") or finish_reason
            deltas.finish()

        return ChatResult(
            content=collector.content,
            provider=self.name,
            model=model,
            usage=usage,
            latency_ms=self._elapsed_ms(start),
            reasoning=collector.reasoning,
            finish_reason=finish_reason,
            cost_usd=self._calc_cost(model, usage.input_tokens, usage.output_tokens),
        )

    # --- embeddings ---

    async def embed(self, text: str, options: RequestOptions) -> list[float]:
        vectors = await self.embed_batch([text], options)
        return vectors[0]

    async def embed_batch(self, texts: list[str], options: RequestOptions) -> list[list[float]]:
        model = self._prepare(options, Capability.EMBEDDING)
        if not texts:
            return []

        with self._backend_call(model, texts[0]):
            data = await self._post_json(
                f"{self.base_url}/embeddings", {"model": model, "input": texts}, self._timeout("text")
            )
            rows = sorted(data["data"], key=lambda row: row.get("index", 0))
            return [row["embedding"] for row in rows]

    def get_dimensions(self, model: str) -> int:
        return EMBEDDING_DIMENSIONS.get(model, 1536)

    # --- vision ---

    async def explain_image(self, image: BinaryInput, prompt: str, options: RequestOptions) -> ChatResult:
        return await self._vision([image], prompt, options)

    async def compare_images(self, image_a: BinaryInput, image_b: BinaryInput, options: RequestOptions) -> ChatResult:
        return await self._vision(
            [image_a, image_b],
            "Compare these two images. Describe the similarities and differences in detail.",
            options,
        )

    async def _vision(self, images: list[BinaryInput], prompt: str, options: RequestOptions) -> ChatResult:
        self._prepare(options, Capability.VISION)
        parts: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        for image in images:
            validate_mime(image, MediaKind.IMAGE)
            parts.append({"type": "image_url", "image_url": {"url": to_data_url(image.data, image.mime_type)}})
        return await self.chat([{"role": "user", "content": parts}], options)

    # --- images ---

    async def generate_image(self, prompt: str, options: RequestOptions) -> list[MediaAsset]:
        model = self._prepare(options, Capability.IMAGE_GENERATION)
        payload: dict[str, Any] = {"model": model, "prompt": prompt, "n": options.n}
        if options.size:
            payload["size"] = options.size
        if options.quality:
            payload["quality"] = options.quality
        if model.startswith("dall-e"):
            payload["response_format"] = "b64_json"
            if options.style:
                payload["style"] = options.style

        with self._backend_call(model, prompt):
            data = await self._post_json(f"{self.base_url}/images/generations", payload, self._timeout("media"))
            assets = []
            for item in data["data"]:
                if item.get("b64_json"):
                    url = f"data:image/png;base64,{item['b64_json']}"
                else:
                    url = item["url"]
                assets.append(
                    MediaAsset(
                        url=url,
                        mime_type="image/png",
                        revised_prompt=item.get("revised_prompt"),
                        provider=self.name,
                        model=model,
                    )
                )
        return assets

    # --- speech ---

    async def transcribe(self, audio: BinaryInput, options: RequestOptions) -> TranscriptionResult:
        model = self._prepare(options, Capability.SPEECH_TO_TEXT)
        validate_mime(audio, MediaKind.AUDIO)

        form = {"model": model, "response_format": "verbose_json" if model.startswith("whisper") else "json"}
        if options.language:
            form["language"] = options.language
        filename = audio.filename or f"audio.{extension_for(audio.mime_type)}"

        with self._backend_call(model, filename):
            async with self._client(self._timeout("media")) as client:
                resp = await client.post(
                    f"{self.base_url}/audio/transcriptions",
                    data=form,
                    files={"file": (filename, audio.data, audio.mime_type)},
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
            resp.raise_for_status()
            data = resp.json()
            return TranscriptionResult(
                text=data["text"],
                language=data.get("language"),
                duration=data.get("duration"),
                provider=self.name,
                model=model,
                segments=data.get("segments") or [],
            )

    async def synthesize(self, text: str, options: RequestOptions) -> MediaAsset:
        model = self._prepare(options, Capability.TEXT_TO_SPEECH)
        if not text.strip():
            raise InvalidRequest("Text to synthesize is empty", provider=self.name)
        voice = options.voice or "alloy"
        if voice not in TTS_VOICES:
            raise InvalidRequest(f"Unknown voice '{voice}'", provider=self.name)
        fmt = options.response_format or "mp3"
        if fmt not in _AUDIO_MIME:
            raise InvalidRequest(f"Unsupported audio format '{fmt}'", provider=self.name)

        with self._backend_call(model, text):
            async with self._client(self._timeout("media")) as client:
                resp = await client.post(
                    f"{self.base_url}/audio/speech",
                    json={"model": model, "input": text, "voice": voice, "response_format": fmt},
                    headers=self._headers(),
                )
            resp.raise_for_status()
            audio = resp.content

        return MediaAsset(
            url=to_data_url(audio, _AUDIO_MIME[fmt]),
            mime_type=_AUDIO_MIME[fmt],
            provider=self.name,
            model=model,
        )

    def get_voices(self) -> list[str]:
        return list(TTS_VOICES)

