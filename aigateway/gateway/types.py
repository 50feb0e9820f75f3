"""Core types and DTOs shared by adapters, breaker, limiter and facade.

All backend calls go through these normalized structures.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable


class Capability(str, Enum):
    """Operations a provider adapter can implement."""

    CHAT = "chat"
    EMBEDDING = "embedding"
    VISION = "vision"
    IMAGE_GENERATION = "image_generation"
    VIDEO_GENERATION = "video_generation"
    SPEECH_TO_TEXT = "speech_to_text"
    TEXT_TO_SPEECH = "text_to_speech"


# Catalog tag used for each capability when ranking models
CAPABILITY_TAGS: dict[Capability, str] = {
    Capability.CHAT: "chat",
    Capability.EMBEDDING: "vectorize",
    Capability.VISION: "pic2text",
    Capability.IMAGE_GENERATION: "text2pic",
    Capability.VIDEO_GENERATION: "text2vid",
    Capability.SPEECH_TO_TEXT: "sound2text",
    Capability.TEXT_TO_SPEECH: "text2sound",
}


class FragmentType(str, Enum):
    CONTENT = "content"
    REASONING = "reasoning"


class Tier(str, Enum):
    """Caller tiers: ANONYMOUS/NEW have lifetime ceilings, the rest rolling windows."""

    ANONYMOUS = "ANONYMOUS"
    NEW = "NEW"
    PRO = "PRO"
    TEAM = "TEAM"
    BUSINESS = "BUSINESS"

    @property
    def uses_lifetime_limits(self) -> bool:
        return self in (Tier.ANONYMOUS, Tier.NEW)


class QuotaAction(str, Enum):
    MESSAGES = "MESSAGES"
    IMAGES = "IMAGES"
    VIDEOS = "VIDEOS"
    AUDIOS = "AUDIOS"
    FILE_ANALYSIS = "FILE_ANALYSIS"


class OperationState(str, Enum):
    READY = "ready"
    PENDING = "pending"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass
class Caller:
    """Who is asking. Defaults are per-caller model choices by capability."""

    id: str
    tier: Tier = Tier.NEW
    default_models: dict[str, int] = field(default_factory=dict)  # capability -> catalog model id
    min_model_rating: float | None = None


@dataclass
class RequestOptions:
    """Per-call options. Unset fields fall back to caller and system defaults."""

    provider: str | None = None
    model: str | None = None
    model_id: int | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    reasoning: bool = False
    cancel_event: asyncio.Event | None = None

    # Capability extras
    n: int = 1
    size: str | None = None
    aspect_ratio: str | None = None
    quality: str | None = None
    style: str | None = None
    duration: int | None = None
    voice: str | None = None
    language: str | None = None
    response_format: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass
class BinaryInput:
    """Raw bytes plus the MIME type they claim to be."""

    data: bytes
    mime_type: str
    filename: str | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StreamFragment:
    type: FragmentType
    content: str

    @classmethod
    def text(cls, content: str) -> StreamFragment:
        return cls(FragmentType.CONTENT, content)

    @classmethod
    def thinking(cls, content: str) -> StreamFragment:
        return cls(FragmentType.REASONING, content)

    @property
    def is_reasoning(self) -> bool:
        return self.type == FragmentType.REASONING

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type.value, "content": self.content}


StreamCallback = Callable[[StreamFragment], None]


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ChatResult:
    """Normalized chat/vision response."""

    content: str = ""
    provider: str = ""
    model: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    latency_ms: int = 0
    reasoning: str = ""
    finish_reason: str = ""
    cost_usd: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "provider": self.provider,
            "model": self.model,
            "usage": {
                "input_tokens": self.usage.input_tokens,
                "output_tokens": self.usage.output_tokens,
                "total_tokens": self.usage.total_tokens,
            },
            "latency_ms": self.latency_ms,
            "reasoning": self.reasoning,
            "finish_reason": self.finish_reason,
            "cost_usd": self.cost_usd,
        }


@dataclass
class MediaAsset:
    """Generated image, video or audio; binary payloads are inlined as data URLs."""

    url: str
    mime_type: str = ""
    revised_prompt: str | None = None
    duration: float | None = None
    provider: str = ""
    model: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TranscriptionResult:
    text: str
    language: str | None = None
    duration: float | None = None
    provider: str = ""
    model: str = ""
    segments: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class OperationHandle:
    """Reference to a long-running backend job."""

    provider: str
    model: str
    operation_id: str
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OperationOutcome:
    state: OperationState
    result: MediaAsset | None = None
    error: str = ""

    @classmethod
    def ready(cls, result: MediaAsset) -> OperationOutcome:
        return cls(OperationState.READY, result=result)

    @classmethod
    def pending(cls) -> OperationOutcome:
        return cls(OperationState.PENDING)

    @classmethod
    def failed(cls, error: str) -> OperationOutcome:
        return cls(OperationState.FAILED, error=error)


@dataclass
class ProviderStatus:
    healthy: bool
    latency_ms: int | None = None
    error_rate: float | None = None
    active_connections: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


# ---------------------------------------------------------------------------
# Quota
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UsageRecord:
    """One ledger row. Never mutated once written."""

    caller_id: str
    timestamp: datetime
    action: QuotaAction
    provider: str = ""
    model: str = ""
    tokens: int = 0
    cost: float = 0.0
    latency_ms: int = 0
    status: str = "success"
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class QuotaCheck:
    allowed: bool
    limit: int
    used: int
    remaining: int
    resets_at: datetime | None
    type: str
    hourly: QuotaCheck | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "allowed": self.allowed,
            "limit": self.limit,
            "used": self.used,
            "remaining": self.remaining,
            "resets_at": self.resets_at.isoformat() if self.resets_at else None,
            "type": self.type,
        }
        if self.hourly is not None:
            data["hourly"] = self.hourly.to_dict()
        return data


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass
class ModelInfo:
    """A catalog entry. Prices are USD per 1M tokens."""

    id: int
    service: str
    name: str
    tag: str
    provider_model: str = ""
    quality: float = 7.0
    rating: float = 0.5
    price_in: float = 0.0
    price_out: float = 0.0
    selectable: bool = True
    active: bool = True
    is_default: bool = False
    features: list[str] = field(default_factory=list)
    description: str = ""

    @property
    def provider(self) -> str:
        return self.service.lower()

    @property
    def api_model(self) -> str:
        return self.provider_model or self.name

    def has_feature(self, feature: str) -> bool:
        return feature in self.features

    def calc_cost(self, input_tokens: int, output_tokens: int) -> float:
        return round((input_tokens * self.price_in + output_tokens * self.price_out) / 1_000_000, 6)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
