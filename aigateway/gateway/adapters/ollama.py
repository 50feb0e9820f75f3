"""Ollama adapter for locally hosted models.

No credential: the provider is available when a base URL is configured.
Streaming responses are newline-delimited JSON objects; the last one
carries `done: true` plus token counts. Thinking models put reasoning in
`message.thinking`.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from aigateway.gateway.adapters.base import BaseProviderAdapter, prompt_of
from aigateway.gateway.capabilities import ChatProvider, EmbeddingProvider, Message, VisionProvider
from aigateway.gateway.media import MediaKind, parse_data_url, to_base64, validate_mime
from aigateway.gateway.streaming import TranscriptCollector, iter_ndjson
from aigateway.gateway.types import (
    BinaryInput,
    Capability,
    ChatResult,
    RequestOptions,
    StreamCallback,
    TokenUsage,
)

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSIONS = {
    "bge-m3": 1024,
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
}


class OllamaAdapter(BaseProviderAdapter, ChatProvider, EmbeddingProvider, VisionProvider):
    name = "ollama"
    env_var = "OLLAMA_BASE_URL"
    requires_api_key = False
    status_path = "/api/tags"
    capabilities = frozenset({Capability.CHAT, Capability.EMBEDDING, Capability.VISION})
    default_models = {
        Capability.CHAT: "mistral:7b",
        Capability.EMBEDDING: "bge-m3",
        Capability.VISION: "llava",
    }

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _payload(self, messages: list[Message], options: RequestOptions, model: str, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [_convert_message(m) for m in messages],
            "stream": stream,
        }
        model_options: dict[str, Any] = {}
        if options.temperature is not None:
            model_options["temperature"] = options.temperature
        if options.max_tokens:
            model_options["num_predict"] = options.max_tokens
        if model_options:
            payload["options"] = model_options
        if options.reasoning:
            payload["think"] = True

        payload.update(options.extra)
        return payload

    async def chat(self, messages: list[Message], options: RequestOptions) -> ChatResult:
        model = self._prepare(options, Capability.CHAT)
        start = time.monotonic()

        with self._backend_call(model, prompt_of(messages)):
            data = await self._post_json(
                f"{self.base_url}/api/chat",
                self._payload(messages, options, model, stream=False),
                self._timeout("text"),
            )
            message = data["message"]
            result = ChatResult(
                content=message.get("content", ""),
                provider=self.name,
                model=data.get("model", model),
                usage=TokenUsage(data.get("prompt_eval_count", 0), data.get("eval_count", 0)),
                reasoning=message.get("thinking", ""),
                finish_reason=data.get("done_reason", ""),
            )

        result.latency_ms = self._elapsed_ms(start)
        result.cost_usd = self._calc_cost(model, result.usage.input_tokens, result.usage.output_tokens)
        return result

    async def chat_stream(
        self, messages: list[Message], callback: StreamCallback, options: RequestOptions
    ) -> ChatResult:
        model = self._prepare(options, Capability.CHAT)
        collector = TranscriptCollector(callback)
        usage = TokenUsage()
        finish_reason = ""
        start = time.monotonic()

        with self._backend_call(model, prompt_of(messages)):
            async with self._client(self._timeout("stream")) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/api/chat",
                    json=self._payload(messages, options, model, stream=True),
                    headers=self._headers(),
                ) as resp:
                    if resp.is_error:
                        await resp.aread()
                    resp.raise_for_status()

                    async for chunk in iter_ndjson(resp):
                        if options.cancelled:
                            logger.info("%s stream cancelled by caller", self.name)
                            break
                        message = chunk.get("message") or {}
                        collector.thinking(message.get("thinking", ""))
                        collector.text(message.get("content", ""))
                        if chunk.get("done"):
                            usage = TokenUsage(chunk.get("prompt_eval_count", 0), chunk.get("eval_count", 0))
                            finish_reason = chunk.get("done_reason", "")

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

    async def embed(self, text: str, options: RequestOptions) -> list[float]:
        vectors = await self.embed_batch([text], options)
        return vectors[0]

    async def embed_batch(self, texts: list[str], options: RequestOptions) -> list[list[float]]:
        model = self._prepare(options, Capability.EMBEDDING)
        if not texts:
            return []
        with self._backend_call(model, texts[0]):
            data = await self._post_json(
                f"{self.base_url}/api/embed", {"model": model, "input": texts}, self._timeout("text")
            )
            return data["embeddings"]

    def get_dimensions(self, model: str) -> int:
        return EMBEDDING_DIMENSIONS.get(model.split(":", 1)[0], 1024)

    async def explain_image(self, image: BinaryInput, prompt: str, options: RequestOptions) -> ChatResult:
        self._prepare(options, Capability.VISION)
        validate_mime(image, MediaKind.IMAGE)
        return await self.chat([{"role": "user", "content": prompt, "images": [to_base64(image.data)]}], options)

    async def compare_images(self, image_a: BinaryInput, image_b: BinaryInput, options: RequestOptions) -> ChatResult:
        self._prepare(options, Capability.VISION)
        for image in (image_a, image_b):
            validate_mime(image, MediaKind.IMAGE)
        message = {
            "role": "user",
            "content": "Compare these two images. Describe the similarities and differences in detail.",
            "images": [to_base64(image_a.data), to_base64(image_b.data)],
        }
        return await self.chat([message], options)


def _convert_message(message: Message) -> dict[str, Any]:
    """Flatten OpenAI-style parts into Ollama's content + images."""
    content = message.get("content", "")
    if isinstance(content, str):
        return dict(message)

    texts, images = [], list(message.get("images", []))
    for part in content:
        if part.get("type") == "text":
            texts.append(part["text"])
        elif part.get("type") == "image_url":
            url = part["image_url"]["url"] if isinstance(part["image_url"], dict) else part["image_url"]
            images.append(to_base64(validate_mime(parse_data_url(url), MediaKind.IMAGE).data))
    converted: dict[str, Any] = {"role": message["role"], "content": "\n".join(texts)}
    if images:
        converted["images"] = images
    return converted
