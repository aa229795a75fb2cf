from __future__ import annotations

import base64
import binascii
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from .errors import UpstreamError
from .types import GenerationResult

_WHITESPACE = re.compile(r"\s+")

PNG_SIGNATURE = b"\x89PNG"
JPEG_SIGNATURE = b"\xff\xd8\xff"
DEFAULT_MIME_TYPE = "image/png"
NO_IMAGE_MESSAGE = "No image output returned by model"


@dataclass(frozen=True, slots=True)
class ImagePayload:
    """First image record found in an upstream body."""

    b64: str
    declared_mime: str


def clean_base64(value: str) -> str:
    """Drop the line wrapping and stray whitespace some upstreams emit."""
    return _WHITESPACE.sub("", value)


def _leading_bytes(b64: str, length: int = 64) -> bytes:
    head = clean_base64(b64)[:length]
    head = head[: len(head) - len(head) % 4]
    try:
        return base64.b64decode(head, validate=False)
    except (binascii.Error, ValueError):
        return b""


def sniff_mime_type(b64: str, declared: str | None = None) -> str:
    """
    Infer the image MIME type from its first bytes.

    Priority is signature match, then the declared type when it is an image
    type, then ``image/png``.
    """
    head = _leading_bytes(b64)
    if head.startswith(PNG_SIGNATURE):
        return "image/png"
    if head.startswith(JPEG_SIGNATURE):
        return "image/jpeg"
    if len(head) >= 12 and head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if isinstance(declared, str) and declared.startswith("image/"):
        return declared
    return DEFAULT_MIME_TYPE


def extract_image_payload(body: Mapping[str, Any]) -> ImagePayload | None:
    data = body.get("data") if isinstance(body, Mapping) else None
    if not isinstance(data, list) or not data:
        return None

    first = data[0]
    if not isinstance(first, Mapping):
        return None
    b64 = first.get("b64_json")
    if not isinstance(b64, str) or not b64:
        return None

    declared = first.get("mime_type")
    return ImagePayload(b64=b64, declared_mime=declared if isinstance(declared, str) else DEFAULT_MIME_TYPE)


def extract_error_message(body: Mapping[str, Any]) -> str | None:
    error = body.get("error") if isinstance(body, Mapping) else None
    if not isinstance(error, Mapping):
        return None
    message = error.get("message")
    return message if isinstance(message, str) else None


def extract_error_details(body: Mapping[str, Any]) -> Dict[str, str | None] | None:
    error = body.get("error") if isinstance(body, Mapping) else None
    if not isinstance(error, Mapping):
        return None

    def text(key: str) -> str | None:
        value = error.get(key)
        return value if isinstance(value, str) else None

    return {
        "message": text("message"),
        "type": text("type"),
        "code": text("code"),
        "param": text("param"),
    }


def normalize_generation(
    body: Mapping[str, Any],
    *,
    model: str,
    quality: str,
    elapsed_ms: int,
) -> GenerationResult:
    """Extract the generated image or raise ``UpstreamError`` with status 502."""
    payload = extract_image_payload(body)
    if payload is None:
        raise UpstreamError(NO_IMAGE_MESSAGE, status_code=502)

    cleaned = clean_base64(payload.b64)
    upstream_id = body.get("id")
    return GenerationResult(
        image_base64=cleaned,
        mime_type=sniff_mime_type(cleaned, payload.declared_mime),
        model=model,
        quality=quality,
        elapsed_ms=elapsed_ms,
        result_id=upstream_id if isinstance(upstream_id, str) and upstream_id else str(uuid.uuid4()),
    )


def build_success_envelope(result: GenerationResult) -> Dict[str, Any]:
    return {
        "id": result.result_id,
        "image_base64": result.image_base64,
        "mime_type": result.mime_type,
        "image_data_url": result.data_url,
        "meta": {
            "model": result.model,
            "quality": result.quality,
            "elapsed_ms": result.elapsed_ms,
        },
    }
