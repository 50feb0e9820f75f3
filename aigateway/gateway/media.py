"""Binary payload helpers: MIME allow-lists, base64 and data URLs.

Every adapter that touches images, audio or video validates its input here
before building a request, so an unsupported type never reaches the network.
"""

from __future__ import annotations

import base64
import binascii
import mimetypes
from enum import Enum
from pathlib import Path

from aigateway.core.exceptions import InvalidRequest
from aigateway.gateway.types import BinaryInput


class MediaKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"


ALLOWED_MIME_TYPES: dict[MediaKind, frozenset[str]] = {
    MediaKind.IMAGE: frozenset({"image/png", "image/jpeg", "image/gif", "image/webp"}),
    MediaKind.AUDIO: frozenset(
        {
            "audio/ogg",
            "audio/mpeg",
            "audio/wav",
            "audio/x-wav",
            "audio/mp4",
            "audio/x-m4a",
            "audio/opus",
            "audio/flac",
            "audio/webm",
            "audio/aac",
            "audio/x-ms-wma",
        }
    ),
    MediaKind.VIDEO: frozenset({"video/mp4", "video/webm", "video/quicktime"}),
}

# Extensions the speech backends accept
AUDIO_EXTENSIONS: dict[str, str] = {
    "ogg": "audio/ogg",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "m4a": "audio/mp4",
    "opus": "audio/opus",
    "flac": "audio/flac",
    "webm": "audio/webm",
    "aac": "audio/aac",
    "wma": "audio/x-ms-wma",
}

_MAGIC: list[tuple[bytes, str]] = [
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"OggS", "audio/ogg"),
    (b"fLaC", "audio/flac"),
    (b"ID3", "audio/mpeg"),
]


def sniff_mime(data: bytes) -> str | None:
    for magic, mime in _MAGIC:
        if data.startswith(magic):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return "audio/wav"
    return None


def guess_mime(filename: str) -> str | None:
    ext = Path(filename).suffix.lower().lstrip(".")
    if ext in AUDIO_EXTENSIONS:
        return AUDIO_EXTENSIONS[ext]
    mime, _ = mimetypes.guess_type(filename)
    return mime


def validate_mime(binary: BinaryInput, kind: MediaKind) -> BinaryInput:
    mime = binary.mime_type.lower().split(";", 1)[0].strip()
    if mime not in ALLOWED_MIME_TYPES[kind]:
        allowed = ", ".join(sorted(ALLOWED_MIME_TYPES[kind]))
        raise InvalidRequest(f"Unsupported {kind.value} type '{binary.mime_type}'. Supported: {allowed}")
    if not binary.data:
        raise InvalidRequest(f"Empty {kind.value} payload")
    return binary


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{to_base64(data)}"


def parse_data_url(url: str) -> BinaryInput:
    """Decode `data:<mime>;base64,<payload>`."""
    if not url.startswith("data:") or "," not in url:
        raise InvalidRequest("Not a data URL")
    header, payload = url[5:].split(",", 1)
    parts = header.split(";")
    if "base64" not in parts[1:]:
        raise InvalidRequest("Only base64 data URLs are supported")
    try:
        data = base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise InvalidRequest(f"Invalid base64 payload: {e}") from e
    return BinaryInput(data=data, mime_type=parts[0] or "application/octet-stream")


def load_binary(
    source: BinaryInput | bytes | str | Path, kind: MediaKind, mime_type: str | None = None
) -> BinaryInput:
    """Normalize raw bytes, a file path or a data URL into a validated BinaryInput."""
    if isinstance(source, BinaryInput):
        binary = source
    elif isinstance(source, bytes):
        mime = mime_type or sniff_mime(source)
        if mime is None:
            raise InvalidRequest(f"Cannot determine {kind.value} type; pass mime_type explicitly")
        binary = BinaryInput(data=source, mime_type=mime)
    elif isinstance(source, str) and source.startswith("data:"):
        binary = parse_data_url(source)
    else:
        path = Path(source)
        if not path.is_file():
            raise InvalidRequest(f"File not found: {path}")
        mime = mime_type or guess_mime(path.name)
        if mime is None:
            raise InvalidRequest(f"Cannot determine {kind.value} type of {path.name}")
        binary = BinaryInput(data=path.read_bytes(), mime_type=mime, filename=path.name)
    return validate_mime(binary, kind)


def extension_for(mime_type: str) -> str:
    for ext, mime in AUDIO_EXTENSIONS.items():
        if mime == mime_type:
            return ext
    guessed = mimetypes.guess_extension(mime_type) or ".bin"
    return guessed.lstrip(".")
