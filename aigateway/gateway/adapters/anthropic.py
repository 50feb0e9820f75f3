"""Anthropic Messages API adapter: chat, streaming with extended thinking, vision.

The stream is a sequence of named events. Output arrives in content blocks:
  content_block_start  (index, block type: "text" or "thinking")
  content_block_delta  (index, text_delta / thinking_delta)
  content_block_stop   (index)
A delta carries only its block index, so the block type is remembered
from the start event until the stop event.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from aigateway.core.exceptions import BackendError, InvalidRequest
from aigateway.gateway.adapters.base import BaseProviderAdapter, prompt_of
from aigateway.gateway.capabilities import ChatProvider, Message, VisionProvider
from aigateway.gateway.media import MediaKind, parse_data_url, to_base64, validate_mime
from aigateway.gateway.streaming import TranscriptCollector, iter_sse_events
from aigateway.gateway.types import (
    BinaryInput,
    Capability,
    ChatResult,
    RequestOptions,
    StreamCallback,
    TokenUsage,
)

logger = logging.getLogger(__name__)

API_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096
MIN_THINKING_BUDGET = 1024


class AnthropicAdapter(BaseProviderAdapter, ChatProvider, VisionProvider):
    name = "anthropic"
    env_var = "ANTHROPIC_API_KEY"
    status_path = "/models"
    capabilities = frozenset({Capability.CHAT, Capability.VISION})
    default_models = {
        Capability.CHAT: "claude-sonnet-4-20250514",
        Capability.VISION: "claude-sonnet-4-20250514",
    }
    # Pricing per 1M tokens
    pricing = {
        "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
        "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
        "claude-opus-4-20250514": {"input": 15.00, "output": 75.00},
    }

    def __init__(self, api_key: str = "", base_url: str = "https://api.anthropic.com/v1", **kwargs):
        super().__init__(api_key=api_key, base_url=base_url, **kwargs)

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }

    def _payload(self, messages: list[Message], options: RequestOptions, model: str) -> dict[str, Any]:
        system_parts: list[str] = []
        converted: list[dict[str, Any]] = []
        for message in messages:
            if message.get("role") == "system":
                system_parts.append(_system_text(message.get("content", "")))
                continue
            converted.append({"role": message["role"], "content": _convert_content(message.get("content", ""))})

        max_tokens = options.max_tokens or DEFAULT_MAX_TOKENS
        payload: dict[str, Any] = {"model": model, "messages": converted, "max_tokens": max_tokens}
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)

        if options.reasoning:
            # Extended thinking only runs at the default temperature
            budget = max(MIN_THINKING_BUDGET, max_tokens // 2)
            payload["max_tokens"] = max(max_tokens, budget + MIN_THINKING_BUDGET)
            payload["thinking"] = {"type": "enabled", "budget_tokens": budget}
        elif options.temperature is not None:
            payload["temperature"] = options.temperature

        payload.update(options.extra)
        return payload

    async def chat(self, messages: list[Message], options: RequestOptions) -> ChatResult:
        model = self._prepare(options, Capability.CHAT)
        payload = self._payload(messages, options, model)
        start = time.monotonic()

        with self._backend_call(model, prompt_of(messages)):
            data = await self._post_json(f"{self.base_url}/messages", payload, self._timeout("text"))
            text = []
            thinking = []
            for block in data["content"]:
                if block["type"] == "text":
                    text.append(block["text"])
                elif block["type"] == "thinking":
                    thinking.append(block.get("thinking", ""))
            usage = data.get("usage") or {}
            result = ChatResult(
                content="".join(text),
                provider=self.name,
                model=data.get("model", model),
                usage=TokenUsage(usage.get("input_tokens", 0), usage.get("output_tokens", 0)),
                reasoning="".join(thinking),
                finish_reason=data.get("stop_reason") or "",
            )

        result.latency_ms = self._elapsed_ms(start)
        result.cost_usd = self._calc_cost(model, result.usage.input_tokens, result.usage.output_tokens)
        return result

    async def chat_stream(
        self, messages: list[Message], callback: StreamCallback, options: RequestOptions
    ) -> ChatResult:
        model = self._prepare(options, Capability.CHAT)
        payload = self._payload(messages, options, model)
        payload["stream"] = True

        collector = TranscriptCollector(callback)
        blocks: dict[int, str] = {}
        usage = TokenUsage()
        finish_reason = ""
        start = time.monotonic()

        with self._backend_call(model, prompt_of(messages)):
            async with self._client(self._timeout("stream")) as client:
                async with client.stream(
                    "POST", f"{self.base_url}/messages", json=payload, headers=self._headers()
                ) as resp:
                    if resp.is_error:
                        await resp.aread()
                    resp.raise_for_status()

                    async for event, data in iter_sse_events(resp):
                        if options.cancelled:
                            logger.info("%s stream cancelled by caller", self.name)
                            break

                        if event == "message_start":
                            usage.input_tokens = data["message"].get("usage", {}).get("input_tokens", 0)
                        elif event == "content_block_start":
                            blocks[data["index"]] = data["content_block"]["type"]
                        elif event == "content_block_delta":
                            delta = data["delta"]
                            block_type = blocks.get(data["index"], "text")
                            if block_type == "thinking" and delta.get("type") == "thinking_delta":
                                collector.thinking(delta.get("thinking", ""))
                            elif block_type == "text" and delta.get("type") == "text_delta":
                                collector.text(delta.get("text", ""))
                        elif event == "content_block_stop":
                            blocks.pop(data["index"], None)
                        elif event == "message_delta":
                            usage.output_tokens = data.get("usage", {}).get("output_tokens", usage.output_tokens)
                            finish_reason = data.get("delta", {}).get("stop_reason") or finish_reason
                        elif event == "message_stop":
                            break
                        elif event == "error":
                            error = data.get("error", {})
                            logger.error("%s stream error for model %s: %s", self.name, model, error)
                            raise BackendError(
                                f"{self.name} stream error: {error.get('message', 'unknown')}",
                                provider=self.name,
                                error_code=error.get("type", ""),
                            )

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

    async def explain_image(self, image: BinaryInput, prompt: str, options: RequestOptions) -> ChatResult:
        self._prepare(options, Capability.VISION)
        return await self.chat([{"role": "user", "content": [_image_block(image), _text_block(prompt)]}], options)

    async def compare_images(self, image_a: BinaryInput, image_b: BinaryInput, options: RequestOptions) -> ChatResult:
        self._prepare(options, Capability.VISION)
        prompt = "Compare these two images. Describe the similarities and differences in detail."
        content = [_image_block(image_a), _image_block(image_b), _text_block(prompt)]
        return await self.chat([{"role": "user", "content": content}], options)


def _text_block(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def _image_block(image: BinaryInput) -> dict[str, Any]:
    validate_mime(image, MediaKind.IMAGE)
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": image.mime_type, "data": to_base64(image.data)},
    }


def _system_text(content: Any) -> str:
    """The top-level `system` field is plain text: strings or text parts only."""
    if isinstance(content, str):
        return content
    if isinstance(content, list) and all(isinstance(p, dict) and p.get("type") == "text" for p in content):
        return "".join(str(p.get("text", "")) for p in content)
    raise InvalidRequest("Anthropic system messages must be text", provider="anthropic")


def _convert_content(content: str | list[dict[str, Any]]) -> str | list[dict[str, Any]]:
    """OpenAI-style parts (text / image_url) to Anthropic blocks."""
    if isinstance(content, str):
        return content
    blocks = []
    for part in content:
        if part.get("type") == "image_url":
            url = part["image_url"]["url"] if isinstance(part["image_url"], dict) else part["image_url"]
            blocks.append(_image_block(parse_data_url(url)))
        elif part.get("type") == "text":
            blocks.append(_text_block(part["text"]))
        else:
            blocks.append(part)
    return blocks
