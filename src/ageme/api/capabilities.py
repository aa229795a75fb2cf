"""
Introspection for ``GET /api/capabilities``.

The default answer is static and costs nothing. With ``probe=1`` a single live
edit of a 1x1 image is sent upstream to check that the endpoint, model and
form fields are still accepted.
"""
from __future__ import annotations

import base64
import logging
import time
from typing import Any, Dict, List, Tuple

import httpx

from ..clients.openai_edits import OpenAIImageEditClient
from ..config import AppConfig
from ..errors import UpstreamError
from ..responses import extract_error_details, extract_image_payload, sniff_mime_type
from ..types import UploadBundle, UploadPayload

logger = logging.getLogger(__name__)

PROBE_PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mP8/x8AAwMCAO7Zb+0AAAAASUVORK5CYII="
)
PROBE_PROMPT = "Slightly adjust brightness while preserving the same tiny image."
PROBE_VALUES = {"1", "true", "yes"}


def wants_probe(value: str | None) -> bool:
    return (value or "").strip().lower() in PROBE_VALUES


def capabilities_body(config: AppConfig, routes: List[Dict[str, str]]) -> Dict[str, Any]:
    upstream = config.upstream
    sent_fields = ["model", "prompt", "image", "mask", "size", "response_format"]
    if upstream.send_quality_hint:
        sent_fields.append("quality")

    return {
        "api": {"routes": routes},
        "openai": {"endpoint": upstream.endpoint, "model": upstream.model},
        "constraints": {
            "supported_input_mime_types": list(config.limits.input_mime_types),
            "mask_mime_type": "image/png",
            "accepted_params_for_upstream": sent_fields,
            "rejected_param_examples": [] if upstream.send_quality_hint else ["quality"],
            "max_image_bytes": config.limits.max_image_bytes,
            "output_size": upstream.output_size,
            "prompt_policy": config.policy.prompt_policy,
        },
        "probe": {
            "available": True,
            "executed": False,
            "note": "Use ?probe=1 for a live upstream compatibility check (may incur image generation cost).",
        },
    }


def probe_bundle() -> UploadBundle:
    return UploadBundle(
        image=UploadPayload(
            data=base64.b64decode(PROBE_PNG_BASE64),
            content_type="image/png",
            filename="probe.png",
        )
    )


async def run_probe(
    config: AppConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Tuple[Dict[str, Any], int]:
    """Perform the live round trip and return the probe block plus HTTP status."""
    if not config.upstream.api_key:
        return {"available": True, "executed": False, "ok": False, "error": "Missing OPENAI_API_KEY"}, 500

    started = time.perf_counter()
    try:
        async with OpenAIImageEditClient(config.upstream, transport=transport) as client:
            exchange = await client.edit(probe_bundle(), PROBE_PROMPT, size=config.upstream.probe_size)
    except UpstreamError as exc:
        return {
            "available": True,
            "executed": True,
            "ok": False,
            "elapsed_ms": int(round((time.perf_counter() - started) * 1000)),
            "error": exc.message,
        }, 502

    image = extract_image_payload(exchange.body)
    if image is not None:
        output: Dict[str, Any] = {
            "returned_image": True,
            "mime_type": sniff_mime_type(image.b64, image.declared_mime),
            "base64_length": len(image.b64),
        }
    else:
        output = {"returned_image": False}

    logger.info("Capabilities probe finished with upstream status %s", exchange.status_code)
    block = {
        "available": True,
        "executed": True,
        "ok": exchange.ok,
        "elapsed_ms": int(round((time.perf_counter() - started) * 1000)),
        "upstream_status": exchange.status_code,
        "upstream_status_text": exchange.status_text,
        "upstream_request_id": exchange.request_id,
        "upstream_processing_ms": exchange.processing_ms,
        "upstream_error": extract_error_details(exchange.body),
        "output": output,
    }
    return block, 200 if exchange.ok else 502
