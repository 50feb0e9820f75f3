"""Tests for provider adapters (mocked HTTP via httpx.MockTransport)."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import httpx
import pytest

from aigateway.core.exceptions import BackendError, BackendTimeout, CredentialsMissing, InvalidRequest
from aigateway.gateway.adapters import (
    ADAPTER_REGISTRY,
    AnthropicAdapter,
    GoogleAdapter,
    GroqAdapter,
    OfflineAdapter,
    OllamaAdapter,
    OpenAIAdapter,
    adapters_from_settings,
    get_adapter,
)
from aigateway.gateway.catalog import ModelCatalog
from aigateway.gateway.types import (
    BinaryInput,
    Capability,
    FragmentType,
    OperationHandle,
    OperationState,
    RequestOptions,
    StreamFragment,
)

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
MESSAGES = [{"role": "user", "content": "Hello"}]


class MockBackend:
    """Records every request and answers with `handler`."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def body(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content)


def _json(data: Any, status_code: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status_code, json=data)


def _sse(chunks: list[dict[str, Any]], done: bool = True) -> bytes:
    body = "".join(f"data: {json.dumps(c)}\n\n" for c in chunks)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode()


def _events(events: list[tuple[str, dict[str, Any]]]) -> bytes:
    return "".join(f"event: {name}\ndata: {json.dumps(data)}\n\n" for name, data in events).encode()


def _stream(body: bytes) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})


class Recorder:
    def __init__(self):
        self.fragments: list[StreamFragment] = []

    def __call__(self, fragment: StreamFragment) -> None:
        self.fragments.append(fragment)

    @property
    def types(self) -> list[FragmentType]:
        return [f.type for f in self.fragments]


OPENAI_CHAT = {
    "model": "gpt-4.1-mini",
    "choices": [{"message": {"role": "assistant", "content": "Hi there"}, "finish_reason": "stop"}],
    "usage": {"prompt_tokens": 10, "completion_tokens": 5},
}


# ==========================================================================
# OpenAI
# ==========================================================================


class TestOpenAIAdapter:
    def _adapter(self, backend: MockBackend, **kwargs) -> OpenAIAdapter:
        return OpenAIAdapter(api_key="sk-test", transport=backend.transport, **kwargs)

    @pytest.mark.asyncio
    async def test_chat(self):
        backend = MockBackend(_json(OPENAI_CHAT))
        result = await self._adapter(backend).chat(MESSAGES, RequestOptions(model="gpt-4.1-mini", temperature=0.2))

        assert result.content == "Hi there"
        assert result.provider == "openai"
        assert result.usage.total_tokens == 15
        assert result.finish_reason == "stop"
        assert result.cost_usd == pytest.approx(0.000012)

        request = backend.requests[0]
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert backend.body()["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_missing_model_makes_no_call(self):
        backend = MockBackend(_json(OPENAI_CHAT))
        with pytest.raises(InvalidRequest, match="model is required"):
            await self._adapter(backend).chat(MESSAGES, RequestOptions())
        assert backend.calls == 0

    @pytest.mark.asyncio
    async def test_missing_key_makes_no_call(self):
        backend = MockBackend(_json(OPENAI_CHAT))
        adapter = OpenAIAdapter(api_key="", transport=backend.transport)

        with pytest.raises(CredentialsMissing) as exc_info:
            await adapter.chat(MESSAGES, RequestOptions(model="gpt-4.1"))

        assert backend.calls == 0
        assert exc_info.value.provider == "openai"
        assert "OPENAI_API_KEY" in str(exc_info.value)
        assert adapter.is_available() is False

    @pytest.mark.asyncio
    async def test_reasoning_model_quirks_by_name(self):
        backend = MockBackend(_json(OPENAI_CHAT))
        options = RequestOptions(model="o3-mini", temperature=0.7, max_tokens=500, reasoning=True)
        await self._adapter(backend).chat(MESSAGES, options)

        body = backend.body()
        assert "temperature" not in body
        assert "max_tokens" not in body
        assert body["max_completion_tokens"] == 500
        assert body["reasoning_effort"] == "high"

    @pytest.mark.asyncio
    async def test_catalog_features_override_name_prefix(self):
        backend = MockBackend(_json(OPENAI_CHAT))
        adapter = self._adapter(backend, catalog=ModelCatalog.default())
        await adapter.chat(MESSAGES, RequestOptions(model="gpt-4.1", temperature=0.5, max_tokens=100))

        body = backend.body()
        assert body["temperature"] == 0.5
        assert body["max_tokens"] == 100
        assert "reasoning_effort" not in body

    @pytest.mark.asyncio
    async def test_cost_from_catalog(self):
        backend = MockBackend(_json({**OPENAI_CHAT, "usage": {"prompt_tokens": 1_000_000, "completion_tokens": 0}}))
        adapter = self._adapter(backend, catalog=ModelCatalog.default())
        result = await adapter.chat(MESSAGES, RequestOptions(model="gpt-4.1"))
        assert result.cost_usd == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_chat_stream(self):
        body = _sse(
            [
                {"choices": [{"delta": {"role": "assistant"}}]},
                {"choices": [{"delta": {"content": "Hel"}}]},
                {"choices": [{"delta": {"content": "lo"}, "finish_reason": "stop"}]},
                {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 2}},
            ]
        )
        backend = MockBackend(_stream(body))
        recorder = Recorder()

        result = await self._adapter(backend).chat_stream(MESSAGES, recorder, RequestOptions(model="gpt-4.1-mini"))

        assert [f.content for f in recorder.fragments] == ["Hel", "lo"]
        assert result.content == "Hello"
        assert result.usage.output_tokens == 2
        assert result.finish_reason == "stop"
        sent = backend.body()
        assert sent["stream"] is True
        assert sent["stream_options"] == {"include_usage": True}

    @pytest.mark.asyncio
    async def test_stream_reasoning_field(self):
        body = _sse(
            [
                {"choices": [{"delta": {"reasoning_content": "thinking..."}}]},
                {"choices": [{"delta": {"content": "Done"}}]},
            ]
        )
        recorder = Recorder()
        result = await self._adapter(MockBackend(_stream(body))).chat_stream(
            MESSAGES, recorder, RequestOptions(model="o3-mini", reasoning=True)
        )
        assert recorder.types == [FragmentType.REASONING, FragmentType.CONTENT]
        assert result.content == "Done"
        assert result.reasoning == "thinking..."

    @pytest.mark.asyncio
    async def test_stream_cancellation(self):
        body = _sse([{"choices": [{"delta": {"content": w}}]} for w in ["one", " two", " three"]])
        cancel = asyncio.Event()

        def on_fragment(fragment: StreamFragment) -> None:
            cancel.set()

        result = await self._adapter(MockBackend(_stream(body))).chat_stream(
            MESSAGES, on_fragment, RequestOptions(model="gpt-4.1-mini", cancel_event=cancel)
        )
        assert result.content == "one"

    @pytest.mark.asyncio
    async def test_stream_http_error(self):
        backend = MockBackend(_json({"error": {"message": "Rate limit reached"}}, status_code=429))
        with pytest.raises(BackendError) as exc_info:
            await self._adapter(backend).chat_stream(MESSAGES, Recorder(), RequestOptions(model="gpt-4.1"))
        assert exc_info.value.status_code == 429
        assert "Rate limit reached" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_http_500(self):
        backend = MockBackend(_json({"error": {"message": "boom"}}, status_code=500))
        with pytest.raises(BackendError) as exc_info:
            await self._adapter(backend).chat(MESSAGES, RequestOptions(model="gpt-4.1"))
        assert exc_info.value.status_code == 500
        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(BackendTimeout):
            await self._adapter(MockBackend(handler)).chat(MESSAGES, RequestOptions(model="gpt-4.1"))

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(BackendError) as exc_info:
            await self._adapter(MockBackend(handler)).chat(MESSAGES, RequestOptions(model="gpt-4.1"))
        assert not isinstance(exc_info.value, BackendTimeout)

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        backend = MockBackend(_json({"unexpected": True}))
        with pytest.raises(BackendError) as exc_info:
            await self._adapter(backend).chat(MESSAGES, RequestOptions(model="gpt-4.1"))
        assert exc_info.value.error_code == "malformed_response"

    @pytest.mark.asyncio
    async def test_embed_batch_sorted_by_index(self):
        backend = MockBackend(
            _json({"data": [{"index": 1, "embedding": [0.2]}, {"index": 0, "embedding": [0.1]}]})
        )
        vectors = await self._adapter(backend).embed_batch(["a", "b"], RequestOptions(model="text-embedding-3-small"))
        assert vectors == [[0.1], [0.2]]
        assert backend.body()["input"] == ["a", "b"]

    def test_dimensions(self):
        adapter = OpenAIAdapter(api_key="k")
        assert adapter.get_dimensions("text-embedding-3-large") == 3072
        assert adapter.get_dimensions("something-else") == 1536

    @pytest.mark.asyncio
    async def test_vision_sends_data_url(self):
        backend = MockBackend(_json(OPENAI_CHAT))
        image = BinaryInput(data=PNG, mime_type="image/png")
        await self._adapter(backend).explain_image(image, "What is it?", RequestOptions(model="gpt-4.1"))

        parts = backend.body()["messages"][0]["content"]
        assert parts[0] == {"type": "text", "text": "What is it?"}
        assert parts[1]["image_url"]["url"].startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_vision_unsupported_mime_makes_no_call(self):
        backend = MockBackend(_json(OPENAI_CHAT))
        image = BinaryInput(data=b"%PDF-1.7", mime_type="application/pdf")
        with pytest.raises(InvalidRequest, match="Unsupported image type"):
            await self._adapter(backend).explain_image(image, "?", RequestOptions(model="gpt-4.1"))
        assert backend.calls == 0

    @pytest.mark.asyncio
    async def test_generate_image_b64(self):
        backend = MockBackend(_json({"data": [{"b64_json": "AAAA", "revised_prompt": "a cat"}]}))
        assets = await self._adapter(backend).generate_image(
            "cat", RequestOptions(model="dall-e-3", size="1024x1024", style="vivid")
        )
        assert assets[0].url == "data:image/png;base64,AAAA"
        assert assets[0].revised_prompt == "a cat"
        body = backend.body()
        assert body["response_format"] == "b64_json"
        assert body["style"] == "vivid"

    @pytest.mark.asyncio
    async def test_transcribe_multipart(self):
        backend = MockBackend(_json({"text": "hello world", "language": "english", "duration": 1.5}))
        audio = BinaryInput(data=b"OggS\x00\x02", mime_type="audio/ogg", filename="voice.ogg")
        result = await self._adapter(backend).transcribe(audio, RequestOptions(model="whisper-1", language="en"))

        assert result.text == "hello world"
        assert result.duration == 1.5
        request = backend.requests[0]
        assert request.url.path == "/v1/audio/transcriptions"
        assert b"verbose_json" in request.content
        assert b"voice.ogg" in request.content

    @pytest.mark.asyncio
    async def test_transcribe_rejects_non_audio(self):
        backend = MockBackend(_json({"text": ""}))
        with pytest.raises(InvalidRequest):
            await self._adapter(backend).transcribe(
                BinaryInput(data=PNG, mime_type="image/png"), RequestOptions(model="whisper-1")
            )
        assert backend.calls == 0

    @pytest.mark.asyncio
    async def test_synthesize(self):
        backend = MockBackend(lambda request: httpx.Response(200, content=b"ID3audio"))
        asset = await self._adapter(backend).synthesize("Hi", RequestOptions(model="tts-1", voice="nova"))
        assert asset.mime_type == "audio/mpeg"
        assert asset.url.startswith("data:audio/mpeg;base64,")
        assert backend.body()["voice"] == "nova"

    @pytest.mark.asyncio
    async def test_synthesize_unknown_voice(self):
        backend = MockBackend(_json({}))
        with pytest.raises(InvalidRequest, match="Unknown voice"):
            await self._adapter(backend).synthesize("Hi", RequestOptions(model="tts-1", voice="robot"))
        assert backend.calls == 0

    @pytest.mark.asyncio
    async def test_video_not_supported(self):
        adapter = OpenAIAdapter(api_key="k")
        assert adapter.supports(Capability.VIDEO_GENERATION) is False

    @pytest.mark.asyncio
    async def test_get_status(self):
        backend = MockBackend(_json({"data": []}))
        status = await self._adapter(backend).get_status()
        assert status.healthy is True
        assert backend.requests[0].url.path == "/v1/models"

    @pytest.mark.asyncio
    async def test_get_status_unhealthy(self):
        backend = MockBackend(_json({}, status_code=503))
        status = await self._adapter(backend).get_status()
        assert status.healthy is False
        assert status.error


# ==========================================================================
# Anthropic
# ==========================================================================


class TestAnthropicAdapter:
    def _adapter(self, backend: MockBackend) -> AnthropicAdapter:
        return AnthropicAdapter(api_key="sk-ant", transport=backend.transport)

    @pytest.mark.asyncio
    async def test_chat_payload_and_headers(self):
        backend = MockBackend(
            _json(
                {
                    "model": "claude-sonnet-4-20250514",
                    "content": [{"type": "text", "text": "Bonjour"}],
                    "usage": {"input_tokens": 8, "output_tokens": 2},
                    "stop_reason": "end_turn",
                }
            )
        )
        messages = [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "Hi"}]
        result = await self._adapter(backend).chat(
            messages, RequestOptions(model="claude-sonnet-4-20250514", temperature=0.3)
        )

        assert result.content == "Bonjour"
        assert result.finish_reason == "end_turn"
        request = backend.requests[0]
        assert request.headers["x-api-key"] == "sk-ant"
        assert request.headers["anthropic-version"] == "2023-06-01"
        body = backend.body()
        assert body["system"] == "Be brief."
        assert body["messages"] == [{"role": "user", "content": "Hi"}]
        assert body["max_tokens"] == 4096
        assert body["temperature"] == 0.3

    @pytest.mark.asyncio
    async def test_system_text_parts_are_joined(self):
        backend = MockBackend(_json({"content": [{"type": "text", "text": "ok"}], "usage": {}}))
        messages = [
            {"role": "system", "content": [{"type": "text", "text": "Be "}, {"type": "text", "text": "brief."}]},
            {"role": "user", "content": "Hi"},
        ]
        await self._adapter(backend).chat(messages, RequestOptions(model="claude-sonnet-4-20250514"))
        assert backend.body()["system"] == "Be brief."

    @pytest.mark.asyncio
    async def test_non_text_system_content_is_invalid(self):
        backend = MockBackend(_json({}))
        messages = [
            {"role": "system", "content": [{"type": "image_url", "image_url": {"url": "data:image/png;base64,AA=="}}]},
            {"role": "user", "content": "Hi"},
        ]
        adapter = self._adapter(backend)
        options = RequestOptions(model="claude-sonnet-4-20250514")

        with pytest.raises(InvalidRequest):
            await adapter.chat(messages, options)
        with pytest.raises(InvalidRequest):
            await adapter.chat_stream(messages, lambda fragment: None, options)
        assert backend.calls == 0

    @pytest.mark.asyncio
    async def test_thinking_payload(self):
        backend = MockBackend(
            _json(
                {
                    "content": [
                        {"type": "thinking", "thinking": "hmm"},
                        {"type": "text", "text": "42"},
                    ],
                    "usage": {},
                }
            )
        )
        result = await self._adapter(backend).chat(
            MESSAGES, RequestOptions(model="claude-sonnet-4-20250514", temperature=0.5, reasoning=True)
        )
        assert result.content == "42"
        assert result.reasoning == "hmm"

        body = backend.body()
        assert "temperature" not in body
        assert body["thinking"] == {"type": "enabled", "budget_tokens": 2048}
        assert body["max_tokens"] > body["thinking"]["budget_tokens"]

    @pytest.mark.asyncio
    async def test_stream_thinking_then_text(self):
        body = _events(
            [
                ("message_start", {"type": "message_start", "message": {"usage": {"input_tokens": 12}}}),
                ("content_block_start", {"index": 0, "content_block": {"type": "thinking", "thinking": ""}}),
                ("content_block_delta", {"index": 0, "delta": {"type": "thinking_delta", "thinking": "Let me think."}}),
                ("content_block_delta", {"index": 0, "delta": {"type": "signature_delta", "signature": "sig"}}),
                ("content_block_stop", {"index": 0}),
                ("content_block_start", {"index": 1, "content_block": {"type": "text", "text": ""}}),
                ("content_block_delta", {"index": 1, "delta": {"type": "text_delta", "text": "Answer."}}),
                ("content_block_stop", {"index": 1}),
                ("message_delta", {"delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 7}}),
                ("message_stop", {"type": "message_stop"}),
            ]
        )
        recorder = Recorder()
        result = await self._adapter(MockBackend(_stream(body))).chat_stream(
            MESSAGES, recorder, RequestOptions(model="claude-sonnet-4-20250514", reasoning=True)
        )

        assert recorder.fragments == [StreamFragment.thinking("Let me think."), StreamFragment.text("Answer.")]
        assert result.content == "Answer."
        assert result.reasoning == "Let me think."
        assert result.usage.input_tokens == 12
        assert result.usage.output_tokens == 7
        assert result.finish_reason == "end_turn"

    @pytest.mark.asyncio
    async def test_stream_error_event(self):
        body = _events([("error", {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})])
        with pytest.raises(BackendError) as exc_info:
            await self._adapter(MockBackend(_stream(body))).chat_stream(
                MESSAGES, Recorder(), RequestOptions(model="claude-sonnet-4-20250514")
            )
        assert exc_info.value.error_code == "overloaded_error"

    @pytest.mark.asyncio
    async def test_vision_base64_block(self):
        backend = MockBackend(_json({"content": [{"type": "text", "text": "a square"}], "usage": {}}))
        image = BinaryInput(data=PNG, mime_type="image/png")
        result = await self._adapter(backend).explain_image(
            image, "Describe", RequestOptions(model="claude-sonnet-4-20250514")
        )
        assert result.content == "a square"
        block = backend.body()["messages"][0]["content"][0]
        assert block["type"] == "image"
        assert block["source"]["media_type"] == "image/png"

    @pytest.mark.asyncio
    async def test_no_embeddings(self):
        adapter = AnthropicAdapter(api_key="k")
        assert adapter.supports(Capability.EMBEDDING) is False
        assert Capability.VISION in adapter.capabilities


# ==========================================================================
# Google
# ==========================================================================


class TestGoogleAdapter:
    def _adapter(self, backend: MockBackend) -> GoogleAdapter:
        return GoogleAdapter(api_key="g-key", transport=backend.transport)

    @pytest.mark.asyncio
    async def test_chat(self):
        backend = MockBackend(
            _json(
                {
                    "candidates": [
                        {
                            "content": {"parts": [{"text": "plan", "thought": True}, {"text": "Result"}]},
                            "finishReason": "STOP",
                        }
                    ],
                    "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 6},
                }
            )
        )
        messages = [
            {"role": "system", "content": "Be kind."},
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello"},
            {"role": "user", "content": "Again"},
        ]
        result = await self._adapter(backend).chat(
            messages, RequestOptions(model="gemini-2.5-flash", max_tokens=50, reasoning=True)
        )

        assert result.content == "Result"
        assert result.reasoning == "plan"
        assert result.usage.total_tokens == 10

        request = backend.requests[0]
        assert request.url.path.endswith("/models/gemini-2.5-flash:generateContent")
        assert request.headers["x-goog-api-key"] == "g-key"
        body = backend.body()
        assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
        assert body["systemInstruction"] == {"parts": [{"text": "Be kind."}]}
        assert body["generationConfig"]["maxOutputTokens"] == 50
        assert body["generationConfig"]["thinkingConfig"] == {"includeThoughts": True}

    @pytest.mark.asyncio
    async def test_extra_fields_are_merged(self):
        backend = MockBackend(_json({"candidates": [{"content": {"parts": [{"text": "ok"}]}, "finishReason": "STOP"}]}))
        safety = [{"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"}]
        await self._adapter(backend).chat(
            MESSAGES, RequestOptions(model="gemini-2.5-flash", extra={"safetySettings": safety})
        )
        assert backend.body()["safetySettings"] == safety

    @pytest.mark.asyncio
    async def test_safety_block(self):
        backend = MockBackend(
            _json({"candidates": [{"finishReason": "SAFETY", "safetyRatings": [{"category": "HARM"}]}]})
        )
        with pytest.raises(BackendError) as exc_info:
            await self._adapter(backend).chat(MESSAGES, RequestOptions(model="gemini-2.5-flash"))
        assert exc_info.value.error_code == "content_blocked"
        assert exc_info.value.context["safety_ratings"] == [{"category": "HARM"}]

    @pytest.mark.asyncio
    async def test_prompt_block(self):
        backend = MockBackend(_json({"promptFeedback": {"blockReason": "OTHER"}}))
        with pytest.raises(BackendError, match="OTHER"):
            await self._adapter(backend).chat(MESSAGES, RequestOptions(model="gemini-2.5-flash"))

    @pytest.mark.asyncio
    async def test_chat_stream(self):
        body = _sse(
            [
                {"candidates": [{"content": {"parts": [{"text": "Thinking", "thought": True}]}}]},
                {"candidates": [{"content": {"parts": [{"text": "Hi "}]}}]},
                {
                    "candidates": [{"content": {"parts": [{"text": "there"}]}, "finishReason": "STOP"}],
                    "usageMetadata": {"promptTokenCount": 2, "candidatesTokenCount": 3},
                },
            ],
            done=False,
        )
        backend = MockBackend(_stream(body))
        recorder = Recorder()
        result = await self._adapter(backend).chat_stream(
            MESSAGES, recorder, RequestOptions(model="gemini-2.5-flash", reasoning=True)
        )

        assert recorder.types == [FragmentType.REASONING, FragmentType.CONTENT, FragmentType.CONTENT]
        assert result.content == "Hi there"
        assert result.usage.output_tokens == 3
        assert backend.requests[0].url.params["alt"] == "sse"

    @pytest.mark.asyncio
    async def test_stream_safety_block_mid_stream(self):
        body = _sse(
            [
                {"candidates": [{"content": {"parts": [{"text": "Start"}]}}]},
                {"candidates": [{"finishReason": "SAFETY"}]},
            ],
            done=False,
        )
        recorder = Recorder()
        with pytest.raises(BackendError) as exc_info:
            await self._adapter(MockBackend(_stream(body))).chat_stream(
                MESSAGES, recorder, RequestOptions(model="gemini-2.5-flash")
            )
        assert exc_info.value.error_code == "content_blocked"
        assert [f.content for f in recorder.fragments] == ["Start"]

    @pytest.mark.asyncio
    async def test_vision_inline_data(self):
        backend = MockBackend(_json({"candidates": [{"content": {"parts": [{"text": "ok"}]}}]}))
        image = BinaryInput(data=PNG, mime_type="image/png")
        await self._adapter(backend).explain_image(image, "Describe", RequestOptions(model="gemini-2.5-flash"))

        parts = backend.body()["contents"][0]["parts"]
        assert parts[0] == {"text": "Describe"}
        assert parts[1]["inline_data"]["mime_type"] == "image/png"

    @pytest.mark.asyncio
    async def test_embed(self):
        backend = MockBackend(_json({"embedding": {"values": [0.1, 0.2, 0.3]}}))
        vector = await self._adapter(backend).embed("hi", RequestOptions(model="text-embedding-004"))
        assert vector == [0.1, 0.2, 0.3]
        assert backend.requests[0].url.path.endswith(":embedContent")

    @pytest.mark.asyncio
    async def test_embed_batch(self):
        backend = MockBackend(_json({"embeddings": [{"values": [1.0]}, {"values": [2.0]}]}))
        vectors = await self._adapter(backend).embed_batch(["a", "b"], RequestOptions(model="text-embedding-004"))
        assert vectors == [[1.0], [2.0]]
        assert len(backend.body()["requests"]) == 2

    @pytest.mark.asyncio
    async def test_imagen(self):
        backend = MockBackend(_json({"predictions": [{"bytesBase64Encoded": "QUJD", "mimeType": "image/png"}]}))
        assets = await self._adapter(backend).generate_image(
            "a fox", RequestOptions(model="imagen-4.0-generate-001", aspect_ratio="16:9")
        )
        assert assets[0].url == "data:image/png;base64,QUJD"
        assert backend.body()["parameters"]["aspectRatio"] == "16:9"

    @pytest.mark.asyncio
    async def test_imagen_empty(self):
        backend = MockBackend(_json({"predictions": []}))
        with pytest.raises(BackendError) as exc_info:
            await self._adapter(backend).generate_image("x", RequestOptions(model="imagen-4.0-generate-001"))
        assert exc_info.value.error_code == "empty_result"

    @pytest.mark.asyncio
    async def test_veo_submit_and_poll(self):
        polls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith(":predictLongRunning"):
                return httpx.Response(200, json={"name": "models/veo-3.0-generate-001/operations/op1"})
            if request.url.host == "files.example.com":
                return httpx.Response(200, content=b"MP4DATA")
            polls["count"] += 1
            if polls["count"] == 1:
                return httpx.Response(200, json={"done": False})
            return httpx.Response(
                200,
                json={
                    "done": True,
                    "response": {
                        "generateVideoResponse": {
                            "generatedSamples": [{"video": {"uri": "https://files.example.com/v.mp4"}}]
                        }
                    },
                },
            )

        backend = MockBackend(handler)
        adapter = self._adapter(backend)
        handle = await adapter.submit_video("a wave", RequestOptions(model="veo-3.0-generate-001"))
        assert handle.operation_id == "models/veo-3.0-generate-001/operations/op1"

        first = await adapter.poll_video(handle)
        assert first.state == OperationState.PENDING

        second = await adapter.poll_video(handle)
        assert second.state == OperationState.READY
        assert second.result.mime_type == "video/mp4"
        assert second.result.duration == 8
        assert second.result.url.startswith("data:video/mp4;base64,")
        assert backend.requests[1].url.path == "/v1beta/models/veo-3.0-generate-001/operations/op1"

    @pytest.mark.asyncio
    async def test_veo_failed_operation(self):
        backend = MockBackend(_json({"done": True, "error": {"message": "policy violation"}}))
        handle = OperationHandle(provider="google", model="veo-3.0-generate-001", operation_id="operations/x")
        outcome = await self._adapter(backend).poll_video(handle)
        assert outcome.state == OperationState.FAILED
        assert outcome.error == "policy violation"


# ==========================================================================
# Groq
# ==========================================================================


class TestGroqAdapter:
    def _adapter(self, backend: MockBackend) -> GroqAdapter:
        return GroqAdapter(api_key="gsk", transport=backend.transport)

    @pytest.mark.asyncio
    async def test_think_tags_split_across_chunks(self):
        pieces = ["<thi", "nk>reason", "ing</th", "ink>Ans", "wer"]
        body = _sse([{"choices": [{"delta": {"content": p}}]} for p in pieces])
        recorder = Recorder()

        result = await self._adapter(MockBackend(_stream(body))).chat_stream(
            MESSAGES, recorder, RequestOptions(model="deepseek-r1-distill-llama-70b", reasoning=True)
        )

        assert result.content == "Answer"
        assert result.reasoning == "reasoning"
        assert all("<" not in f.content for f in recorder.fragments)
        assert recorder.types[0] == FragmentType.REASONING
        assert recorder.types[-1] == FragmentType.CONTENT

    @pytest.mark.asyncio
    async def test_non_stream_think_tags(self):
        data = {
            "choices": [{"message": {"content": "<think>why</think>\nBecause."}, "finish_reason": "stop"}],
            "usage": {},
        }
        result = await self._adapter(MockBackend(_json(data))).chat(
            MESSAGES, RequestOptions(model="qwen-qwq-32b")
        )
        assert result.content == "Because."
        assert result.reasoning == "why"

    @pytest.mark.asyncio
    async def test_reasoning_format(self):
        backend = MockBackend(_json(OPENAI_CHAT))
        await self._adapter(backend).chat(
            MESSAGES, RequestOptions(model="deepseek-r1-distill-llama-70b", reasoning=True, temperature=0.6)
        )
        body = backend.body()
        assert body["reasoning_format"] == "raw"
        assert "reasoning_effort" not in body
        assert body["temperature"] == 0.6
        assert backend.requests[0].url.path == "/openai/v1/chat/completions"

    @pytest.mark.asyncio
    async def test_plain_model_has_no_reasoning_format(self):
        backend = MockBackend(_json(OPENAI_CHAT))
        await self._adapter(backend).chat(MESSAGES, RequestOptions(model="llama-3.3-70b-versatile", reasoning=True))
        assert "reasoning_format" not in backend.body()

    def test_capabilities(self):
        adapter = GroqAdapter(api_key="k")
        assert adapter.supports(Capability.SPEECH_TO_TEXT)
        assert not adapter.supports(Capability.EMBEDDING)


# ==========================================================================
# Ollama
# ==========================================================================


class TestOllamaAdapter:
    def _adapter(self, backend: MockBackend) -> OllamaAdapter:
        return OllamaAdapter(base_url="http://ollama:11434", transport=backend.transport)

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        adapter = OllamaAdapter()
        assert adapter.is_available() is False
        with pytest.raises(CredentialsMissing, match="OLLAMA_BASE_URL"):
            await adapter.chat(MESSAGES, RequestOptions(model="mistral:7b"))

    @pytest.mark.asyncio
    async def test_chat(self):
        backend = MockBackend(
            _json(
                {
                    "model": "mistral:7b",
                    "message": {"role": "assistant", "content": "Salut"},
                    "prompt_eval_count": 5,
                    "eval_count": 1,
                    "done": True,
                    "done_reason": "stop",
                }
            )
        )
        result = await self._adapter(backend).chat(
            MESSAGES, RequestOptions(model="mistral:7b", temperature=0.1, max_tokens=20)
        )
        assert result.content == "Salut"
        assert result.usage.total_tokens == 6
        body = backend.body()
        assert body["stream"] is False
        assert body["options"] == {"temperature": 0.1, "num_predict": 20}

    @pytest.mark.asyncio
    async def test_extra_fields_are_merged(self):
        backend = MockBackend(_json({"message": {"role": "assistant", "content": "ok"}, "done": True}))
        await self._adapter(backend).chat(MESSAGES, RequestOptions(model="mistral:7b", extra={"keep_alive": "5m"}))
        assert backend.body()["keep_alive"] == "5m"

    @pytest.mark.asyncio
    async def test_ndjson_stream(self):
        lines = [
            {"message": {"role": "assistant", "content": "", "thinking": "Hmm"}, "done": False},
            {"message": {"role": "assistant", "content": "Hi"}, "done": False},
            {"message": {"role": "assistant", "content": "!"}, "done": False},
            {"message": {"role": "assistant", "content": ""}, "done": True, "prompt_eval_count": 4, "eval_count": 2},
        ]
        body = "\n".join(json.dumps(line) for line in lines).encode()
        backend = MockBackend(lambda request: httpx.Response(200, content=body))
        recorder = Recorder()

        result = await self._adapter(backend).chat_stream(
            MESSAGES, recorder, RequestOptions(model="deepseek-r1:14b", reasoning=True)
        )

        assert recorder.types == [FragmentType.REASONING, FragmentType.CONTENT, FragmentType.CONTENT]
        assert result.content == "Hi!"
        assert result.reasoning == "Hmm"
        assert result.usage.output_tokens == 2
        assert backend.body()["think"] is True

    @pytest.mark.asyncio
    async def test_embed(self):
        backend = MockBackend(_json({"embeddings": [[0.5, 0.5]]}))
        vector = await self._adapter(backend).embed("text", RequestOptions(model="bge-m3"))
        assert vector == [0.5, 0.5]
        assert backend.requests[0].url.path == "/api/embed"

    @pytest.mark.asyncio
    async def test_vision_images_field(self):
        backend = MockBackend(_json({"message": {"content": "a dot"}}))
        image = BinaryInput(data=PNG, mime_type="image/png")
        await self._adapter(backend).explain_image(image, "What?", RequestOptions(model="llava"))
        message = backend.body()["messages"][0]
        assert message["content"] == "What?"
        assert len(message["images"]) == 1


# ==========================================================================
# Offline test provider
# ==========================================================================


class TestOfflineAdapter:
    @pytest.fixture
    def adapter(self) -> OfflineAdapter:
        return OfflineAdapter()

    @pytest.mark.asyncio
    async def test_chat(self, adapter):
        result = await adapter.chat(MESSAGES, RequestOptions(model="test-model"))
        assert result.content == "Test response to: Hello"
        assert result.reasoning == ""

    @pytest.mark.asyncio
    async def test_stream_with_reasoning(self, adapter):
        recorder = Recorder()
        result = await adapter.chat_stream(MESSAGES, recorder, RequestOptions(model="test-model", reasoning=True))
        assert recorder.types[0] == FragmentType.REASONING
        assert result.content == "Test response to: Hello"
        assert "".join(f.content for f in recorder.fragments if not f.is_reasoning) == result.content

    @pytest.mark.asyncio
    async def test_embeddings_deterministic(self, adapter):
        options = RequestOptions(model="test-model")
        a = await adapter.embed("same", options)
        b = await adapter.embed("same", options)
        c = await adapter.embed("other", options)
        assert a == b
        assert a != c
        assert len(a) == adapter.get_dimensions("test-model") == 64
        assert all(-1.0 <= v <= 1.0 for v in a)

    @pytest.mark.asyncio
    async def test_video_ready_after_polls(self):
        adapter = OfflineAdapter(video_ready_after=3)
        handle = await adapter.submit_video("clip", RequestOptions(model="test-model"))
        states = [(await adapter.poll_video(handle)).state for _ in range(3)]
        assert states == [OperationState.PENDING, OperationState.PENDING, OperationState.READY]

    @pytest.mark.asyncio
    async def test_still_requires_model(self, adapter):
        with pytest.raises(InvalidRequest):
            await adapter.chat(MESSAGES, RequestOptions())


# ==========================================================================
# Adapter registry
# ==========================================================================


class TestAdapterRegistry:
    def test_all_providers_registered(self):
        assert set(ADAPTER_REGISTRY) == {"openai", "anthropic", "google", "groq", "ollama", "test"}

    def test_get_adapter(self):
        adapter = get_adapter("anthropic", api_key="k")
        assert isinstance(adapter, AnthropicAdapter)
        assert adapter.is_available()

    def test_get_adapter_unknown(self):
        with pytest.raises(ValueError, match="No adapter registered"):
            get_adapter("mystery")

    def test_adapters_from_settings(self):
        adapters = adapters_from_settings()
        by_name = {a.name: a for a in adapters}
        assert set(by_name) == set(ADAPTER_REGISTRY)
        assert by_name["test"].is_available()
        assert not by_name["openai"].is_available()
