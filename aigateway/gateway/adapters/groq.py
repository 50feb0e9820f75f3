"""Groq adapter: OpenAI-compatible chat and Whisper transcription.

Reasoning models either return a separate `reasoning` field or inline their
thinking as <think>...</think> inside the content, split arbitrarily across
stream chunks. Both end up as reasoning fragments.
"""

from __future__ import annotations

from typing import Any

from aigateway.gateway.adapters.openai import DeltaHandler, OpenAIAdapter
from aigateway.gateway.capabilities import Message
from aigateway.gateway.streaming import ThinkTagParser, TranscriptCollector, split_think_tags
from aigateway.gateway.types import Capability, ChatResult, RequestOptions

REASONING_PREFIXES = ("deepseek-r1", "qwen", "qwq")


class ThinkTagDeltaHandler(DeltaHandler):
    def __init__(self, collector: TranscriptCollector):
        super().__init__(collector)
        self.parser = ThinkTagParser()

    def content(self, text: str) -> None:
        for fragment in self.parser.feed(text):
            self.collector.emit(fragment)

    def finish(self) -> None:
        for fragment in self.parser.flush():
            self.collector.emit(fragment)


class GroqAdapter(OpenAIAdapter):
    name = "groq"
    env_var = "GROQ_API_KEY"
    delta_handler = ThinkTagDeltaHandler
    capabilities = frozenset({Capability.CHAT, Capability.SPEECH_TO_TEXT})
    default_models = {
        Capability.CHAT: "llama-3.3-70b-versatile",
        Capability.SPEECH_TO_TEXT: "whisper-large-v3",
    }
    # Pricing per 1M tokens
    pricing = {
        "llama-3.3-70b-versatile": {"input": 0.59, "output": 0.79},
        "llama-3.1-8b-instant": {"input": 0.05, "output": 0.08},
        "deepseek-r1-distill-llama-70b": {"input": 0.75, "output": 0.99},
    }

    def __init__(self, api_key: str = "", base_url: str = "https://api.groq.com/openai/v1", **kwargs):
        super().__init__(api_key=api_key, base_url=base_url, **kwargs)

    def _is_reasoning_model(self, model: str) -> bool:
        return self._has_quirk(model, "reasoning", prefixes=REASONING_PREFIXES)

    def _chat_payload(self, messages: list[Message], options: RequestOptions, model: str) -> dict[str, Any]:
        payload = super()._chat_payload(messages, options, model)
        payload.pop("reasoning_effort", None)
        if options.reasoning and self._is_reasoning_model(model):
            payload["reasoning_format"] = "raw"
        return payload

    def _parse_chat(self, data: dict[str, Any], model: str) -> ChatResult:
        result = super()._parse_chat(data, model)
        if "<think>" in result.content:
            content, reasoning = split_think_tags(result.content)
            result.content = content
            result.reasoning = "\n".join(r for r in (result.reasoning, reasoning) if r)
        return result
