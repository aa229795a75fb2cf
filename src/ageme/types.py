from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping


@dataclass(slots=True)
class UploadPayload:
    """A single file travelling in the multipart form."""

    data: bytes
    content_type: str
    filename: str

    @property
    def size(self) -> int:
        return len(self.data)

    def describe(self) -> Dict[str, Any]:
        """Summary used in debug echoes; never includes the bytes."""
        return {"name": self.filename, "type": self.content_type, "size": self.size}


@dataclass(slots=True)
class UploadBundle:
    """Image plus optional edit mask for one request."""

    image: UploadPayload
    mask: UploadPayload | None = None


@dataclass(slots=True)
class UpstreamExchange:
    """Everything observed from one upstream round trip."""

    status_code: int
    status_text: str
    elapsed_ms: int
    body: Mapping[str, Any]
    request_id: str | None = None
    processing_ms: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass(slots=True)
class GenerationResult:
    """Normalized image returned by the upstream model."""

    image_base64: str
    mime_type: str
    model: str
    quality: str
    elapsed_ms: int
    result_id: str

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.image_base64}"
