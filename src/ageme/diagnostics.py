from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping

from .params import AgeParams
from .responses import extract_error_details
from .types import GenerationResult, UploadBundle, UpstreamExchange


def describe_input(bundle: UploadBundle, params: AgeParams | None) -> Dict[str, Any]:
    return {
        "image": bundle.image.describe(),
        "mask": bundle.mask.describe() if bundle.mask is not None else None,
        "params": params.model_dump() if params is not None else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def describe_exchange(exchange: UpstreamExchange) -> Dict[str, Any]:
    return {
        "upstream_status": exchange.status_code,
        "upstream_status_text": exchange.status_text,
        "upstream_request_id": exchange.request_id,
        "upstream_processing_ms": exchange.processing_ms,
        "upstream_elapsed_ms": exchange.elapsed_ms,
        "upstream_error": extract_error_details(exchange.body),
    }


def describe_output(result: GenerationResult) -> Dict[str, Any]:
    return {"mime_type": result.mime_type, "base64_length": len(result.image_base64)}


class DebugRecorder:
    """
    Per-request diagnostic trace.

    Sections are recorded unconditionally as the request progresses; they only
    reach the response body when the caller opted in. Recording never raises
    and never changes the outcome of the request.
    """

    def __init__(self, enabled: bool) -> None:
        self.enabled = enabled
        self._sections: Dict[str, Any] = {}

    def record(self, section: str, value: Any) -> None:
        self._sections[section] = value

    def snapshot(self) -> Dict[str, Any] | None:
        return dict(self._sections) if self._sections else None

    def attach(self, body: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
        if self.enabled:
            body["debug"] = self.snapshot()
        return body
