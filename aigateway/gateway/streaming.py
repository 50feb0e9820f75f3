"""Stream framing helpers shared by the adapters.

Backends frame incremental output differently:
  - `data: {json}` lines terminated by `data: [DONE]` (OpenAI, Groq, Gemini)
  - named SSE events, `event: x` followed by `data: {json}` (Anthropic)
  - newline-delimited JSON objects carrying a `done` flag (Ollama)

Each helper yields parsed JSON objects; the adapter maps them onto
StreamFragments and feeds them to a TranscriptCollector.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from aigateway.gateway.types import StreamCallback, StreamFragment

logger = logging.getLogger(__name__)


async def iter_sse_data_json(response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """Yield the JSON payload of every `data:` line, stopping at [DONE]."""
    async for line in response.aiter_lines():
        if not line or not line.startswith("data:"):
            continue
        payload = line[5:].strip()
        if not payload:
            continue
        if payload == "[DONE]":
            return
        try:
            parsed = json.loads(payload)
        except ValueError:
            logger.debug("Skipping undecodable SSE payload: %s", payload[:100])
            continue
        if isinstance(parsed, dict):
            yield parsed


async def iter_sse_events(response: httpx.Response) -> AsyncIterator[tuple[str, dict[str, Any]]]:
    """Yield (event_name, data) pairs for named-event SSE streams.

    An event without an explicit `event:` line takes its name from the
    payload's `type` field.
    """
    event_name = ""
    async for line in response.aiter_lines():
        if not line:
            event_name = ""
            continue
        if line.startswith("event:"):
            event_name = line[6:].strip()
            continue
        if not line.startswith("data:"):
            continue
        try:
            data = json.loads(line[5:].strip())
        except ValueError:
            continue
        if isinstance(data, dict):
            yield event_name or str(data.get("type", "")), data


async def iter_ndjson(response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """Yield one object per non-empty line, stopping after an object with done=true."""
    async for line in response.aiter_lines():
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except ValueError:
            logger.debug("Skipping undecodable NDJSON line: %s", line[:100])
            continue
        if not isinstance(data, dict):
            continue
        yield data
        if data.get("done"):
            return


class TranscriptCollector:
    """Forwards fragments to the caller's callback and keeps the transcripts.

    `content` is the concatenation of content fragments only; reasoning is
    collected separately and never leaks into the answer.
    """

    def __init__(self, callback: StreamCallback):
        self._callback = callback
        self._content: list[str] = []
        self._reasoning: list[str] = []

    def emit(self, fragment: StreamFragment) -> None:
        if not fragment.content:
            return
        if fragment.is_reasoning:
            self._reasoning.append(fragment.content)
        else:
            self._content.append(fragment.content)
        self._callback(fragment)

    def text(self, content: str) -> None:
        self.emit(StreamFragment.text(content))

    def thinking(self, content: str) -> None:
        self.emit(StreamFragment.thinking(content))

    @property
    def content(self) -> str:
        return "".join(self._content)

    @property
    def reasoning(self) -> str:
        return "".join(self._reasoning)


class ThinkTagParser:
    """Splits text that inlines reasoning as <think>...</think> into fragments.

    Tags may be split across chunks, so a trailing partial tag is held back
    until the next feed() or flush().
    """

    OPEN = "<think>"
    CLOSE = "</think>"

    def __init__(self):
        self._buffer = ""
        self._inside = False

    def feed(self, chunk: str) -> list[StreamFragment]:
        self._buffer += chunk
        fragments: list[StreamFragment] = []

        while self._buffer:
            tag = self.CLOSE if self._inside else self.OPEN
            idx = self._buffer.find(tag)
            if idx >= 0:
                self._push(fragments, self._buffer[:idx])
                self._buffer = self._buffer[idx + len(tag) :]
                self._inside = not self._inside
                continue

            keep = _partial_suffix(self._buffer, tag)
            self._push(fragments, self._buffer[: len(self._buffer) - keep])
            self._buffer = self._buffer[len(self._buffer) - keep :]
            break

        return fragments

    def flush(self) -> list[StreamFragment]:
        fragments: list[StreamFragment] = []
        self._push(fragments, self._buffer)
        self._buffer = ""
        return fragments

    def _push(self, fragments: list[StreamFragment], text: str) -> None:
        if text:
            fragments.append(StreamFragment.thinking(text) if self._inside else StreamFragment.text(text))


def _partial_suffix(text: str, tag: str) -> int:
    """Length of the longest suffix of `text` that is a proper prefix of `tag`."""
    for size in range(min(len(tag) - 1, len(text)), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0


def split_think_tags(text: str) -> tuple[str, str]:
    """Non-streaming variant: returns (content, reasoning)."""
    parser = ThinkTagParser()
    fragments = parser.feed(text) + parser.flush()
    content = "".join(f.content for f in fragments if not f.is_reasoning)
    reasoning = "".join(f.content for f in fragments if f.is_reasoning)
    return content.strip(), reasoning.strip()
