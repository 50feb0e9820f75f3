"""Google Gemini API adapter.

Capabilities:
  - Gemini chat via generateContent, streaming via streamGenerateContent?alt=sse
  - vision through inline_data parts
  - embeddings via embedContent / batchEmbedContents
  - Imagen image generation via :predict
  - Veo video generation as a long-running operation: predictLongRunning
    returns an operation name, polling GET {base}/{name} until `done`, then
    the generated file is downloaded and inlined as a data URL

finishReason SAFETY or a promptFeedback.blockReason is a content-policy
rejection and raises BackendError("content_blocked").
"""

from __future__ import annotations

import logging
import time
from typing import Any

from aigateway.core.exceptions import BackendError
from aigateway.core.logging import truncate
from aigateway.gateway.adapters.base import BaseProviderAdapter, prompt_of
from aigateway.gateway.capabilities import (
    ChatProvider,
    EmbeddingProvider,
    ImageGenerationProvider,
    Message,
    VideoGenerationProvider,
    VisionProvider,
)
from aigateway.gateway.media import MediaKind, parse_data_url, to_base64, to_data_url, validate_mime
from aigateway.gateway.streaming import TranscriptCollector, iter_sse_data_json
from aigateway.gateway.types import (
    BinaryInput,
    Capability,
    ChatResult,
    MediaAsset,
    OperationHandle,
    OperationOutcome,
    RequestOptions,
    StreamCallback,
    TokenUsage,
)

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSIONS = {
    "gemini-embedding-001": 3072,
    "text-embedding-004": 768,
}

VEO_CLIP_SECONDS = 8
BLOCKED_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}


class GoogleAdapter(
    BaseProviderAdapter,
    ChatProvider,
    EmbeddingProvider,
    VisionProvider,
    ImageGenerationProvider,
    VideoGenerationProvider,
):
    """Google Gemini, Imagen and Veo adapter."""

    name = "google"
    env_var = "GOOGLE_GEMINI_API_KEY"
    status_path = "/models"
    capabilities = frozenset(
        {
            Capability.CHAT,
            Capability.EMBEDDING,
            Capability.VISION,
            Capability.IMAGE_GENERATION,
            Capability.VIDEO_GENERATION,
        }
    )
    default_models = {
        Capability.CHAT: "gemini-2.5-flash",
        Capability.EMBEDDING: "gemini-embedding-001",
        Capability.VISION: "gemini-2.5-flash",
        Capability.IMAGE_GENERATION: "imagen-4.0-generate-001",
        Capability.VIDEO_GENERATION: "veo-3.0-generate-001",
    }
    # Pricing per 1M tokens
    pricing = {
        "gemini-2.5-flash": {"input": 0.30, "output": 2.50},
        "gemini-2.5-pro": {"input": 1.25, "output": 10.00},
        "gemini-2.0-flash": {"input": 0.10, "output": 0.40},
    }

    def __init__(
        self, api_key: str = "", base_url: str = "https://generativelanguage.googleapis.com/v1beta", **kwargs
    ):
        super().__init__(api_key=api_key, base_url=base_url, **kwargs)

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

    # --- chat ---

    def _payload(self, messages: list[Message], options: RequestOptions) -> dict[str, Any]:
        contents = []
        system_parts = []
        for message in messages:
            if message.get("role") == "system":
                system_parts.append({"text": message.get("content", "")})
                continue
            role = "model" if message.get("role") == "assistant" else "user"
            contents.append({"role": role, "parts": _convert_parts(message.get("content", ""))})

        payload: dict[str, Any] = {"contents": contents}
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}

        generation: dict[str, Any] = {}
        if options.temperature is not None:
            generation["temperature"] = options.temperature
        if options.max_tokens:
            generation["maxOutputTokens"] = options.max_tokens
        if options.reasoning:
            generation["thinkingConfig"] = {"includeThoughts": True}
        if generation:
            payload["generationConfig"] = generation

        payload.update(options.extra)
        return payload

    def _check_blocked(self, data: dict[str, Any], model: str, prompt: str) -> None:
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        finish_reason = ""
        candidates = data.get("candidates") or []
        if candidates:
            finish_reason = candidates[0].get("finishReason", "")

        if block_reason or finish_reason in BLOCKED_FINISH_REASONS:
            reason = block_reason or finish_reason
            logger.warning(
                "Gemini safety filter triggered (%s) for model %s | prompt: %s", reason, model, truncate(prompt)
            )
            raise BackendError(
                f"Gemini blocked the request: {reason}",
                provider=self.name,
                error_code="content_blocked",
                context={"safety_ratings": candidates[0].get("safetyRatings", []) if candidates else []},
            )

    async def chat(self, messages: list[Message], options: RequestOptions) -> ChatResult:
        model = self._prepare(options, Capability.CHAT)
        prompt = prompt_of(messages)
        start = time.monotonic()

        with self._backend_call(model, prompt):
            data = await self._post_json(
                f"{self.base_url}/models/{model}:generateContent",
                self._payload(messages, options),
                self._timeout("text"),
            )
            self._check_blocked(data, model, prompt)

            candidate = data["candidates"][0]
            text, thoughts = [], []
            for part in candidate.get("content", {}).get("parts", []):
                if "text" not in part:
                    continue
                (thoughts if part.get("thought") else text).append(part["text"])

            meta = data.get("usageMetadata") or {}
            result = ChatResult(
                content="".join(text),
                provider=self.name,
                model=data.get("modelVersion", model),
                usage=TokenUsage(meta.get("promptTokenCount", 0), meta.get("candidatesTokenCount", 0)),
                reasoning="".join(thoughts),
                finish_reason=candidate.get("finishReason", ""),
            )

        result.latency_ms = self._elapsed_ms(start)
        result.cost_usd = self._calc_cost(model, result.usage.input_tokens, result.usage.output_tokens)
        return result

    async def chat_stream(
        self, messages: list[Message], callback: StreamCallback, options: RequestOptions
    ) -> ChatResult:
        model = self._prepare(options, Capability.CHAT)
        prompt = prompt_of(messages)
        collector = TranscriptCollector(callback)
        usage = TokenUsage()
        finish_reason = ""
        start = time.monotonic()

        with self._backend_call(model, prompt):
            async with self._client(self._timeout("stream")) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/models/{model}:streamGenerateContent?alt=sse",
                    json=self._payload(messages, options),
                    headers=self._headers(),
                ) as resp:
                    if resp.is_error:
                        await resp.aread()
                    resp.raise_for_status()

                    async for chunk in iter_sse_data_json(resp):
                        if options.cancelled:
                            logger.info("%s stream cancelled by caller", self.name)
                            break
                        self._check_blocked(chunk, model, prompt)

                        for candidate in chunk.get("candidates") or []:
                            for part in candidate.get("content", {}).get("parts", []):
                                if part.get("thought"):
                                    collector.thinking(part.get("text", ""))
                                else:
                                    collector.text(part.get("text", ""))
                            finish_reason = candidate.get("finishReason") or finish_reason

                        meta = chunk.get("usageMetadata")
                        if meta:
                            usage = TokenUsage(meta.get("promptTokenCount", 0), meta.get("candidatesTokenCount", 0))

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

    # --- vision ---

    async def explain_image(self, image: BinaryInput, prompt: str, options: RequestOptions) -> ChatResult:
        self._prepare(options, Capability.VISION)
        validate_mime(image, MediaKind.IMAGE)
        content = [{"type": "text", "text": prompt}, _image_part(image)]
        return await self.chat([{"role": "user", "content": content}], options)

    async def compare_images(self, image_a: BinaryInput, image_b: BinaryInput, options: RequestOptions) -> ChatResult:
        self._prepare(options, Capability.VISION)
        for image in (image_a, image_b):
            validate_mime(image, MediaKind.IMAGE)
        content = [
            {"type": "text", "text": "Compare these two images. Describe the similarities and differences in detail."},
            _image_part(image_a),
            _image_part(image_b),
        ]
        return await self.chat([{"role": "user", "content": content}], options)

    # --- embeddings ---

    async def embed(self, text: str, options: RequestOptions) -> list[float]:
        model = self._prepare(options, Capability.EMBEDDING)
        with self._backend_call(model, text):
            data = await self._post_json(
                f"{self.base_url}/models/{model}:embedContent",
                {"content": {"parts": [{"text": text}]}},
                self._timeout("text"),
            )
            return data["embedding"]["values"]

    async def embed_batch(self, texts: list[str], options: RequestOptions) -> list[list[float]]:
        model = self._prepare(options, Capability.EMBEDDING)
        if not texts:
            return []
        requests = [{"model": f"models/{model}", "content": {"parts": [{"text": t}]}} for t in texts]
        with self._backend_call(model, texts[0]):
            data = await self._post_json(
                f"{self.base_url}/models/{model}:batchEmbedContents", {"requests": requests}, self._timeout("text")
            )
            return [row["values"] for row in data["embeddings"]]

    def get_dimensions(self, model: str) -> int:
        return EMBEDDING_DIMENSIONS.get(model, 768)

    # --- images ---

    async def generate_image(self, prompt: str, options: RequestOptions) -> list[MediaAsset]:
        model = self._prepare(options, Capability.IMAGE_GENERATION)
        payload = {
            "instances": [{"prompt": prompt}],
            "parameters": {
                "sampleCount": options.n,
                "aspectRatio": options.aspect_ratio or "1:1",
                "personGeneration": "allow_all",
            },
        }

        with self._backend_call(model, prompt):
            data = await self._post_json(f"{self.base_url}/models/{model}:predict", payload, self._timeout("media"))
            predictions = data.get("predictions") or []
            if not predictions:
                raise BackendError("Imagen returned no images", provider=self.name, error_code="empty_result")
            return [
                MediaAsset(
                    url=f"data:{p.get('mimeType', 'image/png')};base64,{p['bytesBase64Encoded']}",
                    mime_type=p.get("mimeType", "image/png"),
                    revised_prompt=prompt,
                    provider=self.name,
                    model=model,
                )
                for p in predictions
            ]

    # --- video ---

    async def submit_video(self, prompt: str, options: RequestOptions) -> OperationHandle:
        model = self._prepare(options, Capability.VIDEO_GENERATION)
        payload: dict[str, Any] = {"instances": [{"prompt": prompt}]}
        if options.aspect_ratio:
            payload["parameters"] = {"aspectRatio": options.aspect_ratio}

        with self._backend_call(model, prompt):
            data = await self._post_json(
                f"{self.base_url}/models/{model}:predictLongRunning", payload, self._timeout("text")
            )
            operation = data.get("name")
            if not operation:
                raise BackendError("No operation name returned from Veo", provider=self.name)

        logger.info("Veo operation %s started for model %s", operation, model)
        return OperationHandle(provider=self.name, model=model, operation_id=operation)

    async def poll_video(self, handle: OperationHandle) -> OperationOutcome:
        with self._backend_call(handle.model, handle.operation_id):
            async with self._client(self._timeout("text")) as client:
                resp = await client.get(f"{self.base_url}/{handle.operation_id}", headers=self._headers())
            resp.raise_for_status()
            data = resp.json()

            if not data.get("done"):
                return OperationOutcome.pending()
            if "error" in data:
                return OperationOutcome.failed(data["error"].get("message", "unknown error"))

            samples = data["response"]["generateVideoResponse"]["generatedSamples"]
            uri = samples[0]["video"]["uri"]
            video = await self._download(uri)

        return OperationOutcome.ready(
            MediaAsset(
                url=to_data_url(video, "video/mp4"),
                mime_type="video/mp4",
                duration=VEO_CLIP_SECONDS,
                provider=self.name,
                model=handle.model,
            )
        )

    async def _download(self, uri: str) -> bytes:
        async with self._client(self._timeout("media")) as client:
            resp = await client.get(uri, headers={"x-goog-api-key": self.api_key}, follow_redirects=True)
        resp.raise_for_status()
        return resp.content


def _image_part(image: BinaryInput) -> dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": to_data_url(image.data, image.mime_type)}}


def _convert_parts(content: str | list[dict[str, Any]]) -> list[dict[str, Any]]:
    """OpenAI-style message content to Gemini parts; data URL images become inline_data."""
    if isinstance(content, str):
        return [{"text": content}]
    parts = []
    for part in content:
        if part.get("type") == "text":
            parts.append({"text": part["text"]})
        elif part.get("type") == "image_url":
            url = part["image_url"]["url"] if isinstance(part["image_url"], dict) else part["image_url"]
            binary = validate_mime(parse_data_url(url), MediaKind.IMAGE)
            parts.append({"inline_data": {"mime_type": binary.mime_type, "data": to_base64(binary.data)}})
    return parts
