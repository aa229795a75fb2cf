"""
Client-side flow: explicit state plus pure helpers.

``ClientState`` holds everything a front end needs between interactions.
Each helper takes a state and returns a new one, so front ends (the CLI in
``scripts/age_face.py`` or anything else) only perform transitions and render.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple

import httpx

from .config import ClientConfig
from .errors import InvalidInputError, NormalizationError, UploadRejectedError
from .imaging.masks import build_edit_mask, encode_mask
from .imaging.normalize import NormalizedUpload, check_source, decode_image, normalize_upload
from .params import validate_params
from .types import UploadPayload

logger = logging.getLogger(__name__)

PARAM_FIELDS = (
    "age_delta",
    "intensity",
    "hair_color",
    "glasses",
    "baldness",
    "blemish_fix",
    "skin_texture",
    "quality",
    "preserve_identity",
)

_EXTENSIONS = {"image/png": ".png", "image/jpeg": ".jpg", "image/webp": ".webp"}


@dataclass(frozen=True)
class ClientState:
    source: UploadPayload | None = None
    upload: UploadPayload | None = None
    normalized: NormalizedUpload | None = None
    mask: UploadPayload | None = None
    status: str = "Select a photo to start."
    after_data_url: str = ""
    last_debug: Any = None
    in_flight: bool = False

    @property
    def ready(self) -> bool:
        return (self.upload or self.source) is not None and not self.in_flight


def load_photo(state: ClientState, photo: UploadPayload, config: ClientConfig) -> ClientState:
    """Accept a new source photo and prepare the upload copy."""
    cleared = replace(state, source=None, upload=None, normalized=None, mask=None, after_data_url="", last_debug=None)
    try:
        check_source(photo, config.max_source_bytes)
    except UploadRejectedError as exc:
        return replace(cleared, status=str(exc))

    try:
        normalized = normalize_upload(photo, config)
    except NormalizationError as exc:
        if config.on_failure == "fail":
            return replace(cleared, status=f"Error: {exc}")
        logger.warning("Normalization failed, sending original: %s", exc)
        return replace(cleared, source=photo, upload=photo, status=f"Photo loaded. Using original upload ({exc})")

    return replace(
        cleared,
        source=photo,
        upload=normalized.payload,
        normalized=normalized,
        status="Photo loaded. Adjust settings and click Generate.",
    )


def build_params(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Collect control values into the request params object, in a fixed key order."""
    missing = [name for name in PARAM_FIELDS if name not in values]
    if missing:
        raise KeyError(f"Missing control values: {', '.join(missing)}")
    return {name: values[name] for name in PARAM_FIELDS}


def _upload_size(upload: UploadPayload, normalized: NormalizedUpload | None) -> Tuple[int, int]:
    if normalized is not None:
        return normalized.canvas_size
    return decode_image(upload.data).size


def attach_mask(state: ClientState, params: Mapping[str, Any], config: ClientConfig) -> ClientState:
    """Build the edit mask for the current upload, or drop it when the policy says so."""
    if state.upload is None or config.mask_policy == "none":
        return replace(state, mask=None)
    if state.upload.content_type != "image/png":
        # Upstream only pairs masks with PNG inputs.
        return replace(state, mask=None)

    try:
        validated = validate_params(dict(params))
    except InvalidInputError as exc:
        raise InvalidInputError(f"Cannot build mask: {exc.message}") from exc
    try:
        size = _upload_size(state.upload, state.normalized)
    except NormalizationError as exc:
        logger.warning("Skipping edit mask: %s", exc)
        return replace(state, mask=None, status=f"{state.status} Sending without an edit mask.")
    mask = build_edit_mask(size, validated, config.mask_policy)
    return replace(state, mask=encode_mask(mask) if mask is not None else None)


def build_form(state: ClientState, params: Mapping[str, Any]) -> Tuple[Dict[str, str], List[Tuple[str, Tuple[str, bytes, str]]]]:
    upload = state.upload or state.source
    if upload is None:
        raise ValueError("Please choose a photo first.")
    files = [("image", (upload.filename, upload.data, upload.content_type))]
    if state.mask is not None:
        files.append(("mask", (state.mask.filename, state.mask.data, state.mask.content_type)))
    return {"params": json.dumps(dict(params))}, files


def build_client_debug(state: ClientState, params: Mapping[str, Any], endpoint: str) -> Dict[str, Any]:
    source, sent = state.source, state.upload or state.source
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "endpoint": endpoint,
        "upload": {
            "source_name": source.filename if source else None,
            "source_type": source.content_type if source else None,
            "source_size": source.size if source else None,
            "sent_name": sent.filename if sent else None,
            "sent_type": sent.content_type if sent else None,
            "sent_size": sent.size if sent else None,
            "mask_size": state.mask.size if state.mask else None,
        },
        "params": dict(params),
    }


def parse_json_safely(raw_text: str) -> Dict[str, Any]:
    if not raw_text:
        return {}
    try:
        parsed = json.loads(raw_text)
    except json.JSONDecodeError:
        return {"raw_text": raw_text}
    return parsed if isinstance(parsed, dict) else {"raw_body": parsed}


def normalize_image_data_url(body: Mapping[str, Any]) -> str:
    """Prefer the server's data URL, else rebuild one from the base64 field."""
    data_url = body.get("image_data_url")
    if isinstance(data_url, str) and data_url.startswith("data:image/"):
        return data_url

    raw = body.get("image_base64")
    b64 = raw.strip() if isinstance(raw, str) else ""
    if b64.startswith("data:image/"):
        return b64
    if not b64:
        raise ValueError("No image data was returned by the API.")

    mime = body.get("mime_type")
    if not (isinstance(mime, str) and mime.startswith("image/")):
        mime = "image/png"
    return f"data:{mime};base64,{''.join(b64.split())}"


def apply_response(state: ClientState, status_code: int, body: Mapping[str, Any], *, debug: bool) -> ClientState:
    """Transition after the API answered."""
    if not 200 <= status_code < 300:
        error = body.get("error") if isinstance(body.get("error"), Mapping) else {}
        message = error.get("message") or "Generation failed."
        last_debug = {"stage": "error-response", "http_status": status_code, "body": dict(body)} if debug else None
        return replace(state, in_flight=False, status=f"Error: {message}", last_debug=last_debug)

    try:
        data_url = normalize_image_data_url(body)
    except ValueError as exc:
        return replace(state, in_flight=False, status=f"Error: {exc}")

    last_debug = None
    if debug and body.get("debug") is not None:
        last_debug = {"stage": "success-response", "server_debug": body["debug"], "meta": body.get("meta")}
    return replace(
        state,
        in_flight=False,
        after_data_url=data_url,
        last_debug=last_debug,
        status="Done. Result ready.",
    )


def decode_data_url(data_url: str) -> Tuple[str, bytes]:
    header, _, b64 = data_url.partition(",")
    if not header.startswith("data:") or ";base64" not in header:
        raise ValueError("Not a base64 data URL")
    mime = header[len("data:"):].split(";", 1)[0]
    try:
        return mime, base64.b64decode(b64)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Data URL payload is not valid base64") from exc


def save_result(state: ClientState, directory: Path, stem: str | None = None) -> Path:
    if not state.after_data_url:
        raise ValueError("No generated image to save.")
    mime, data = decode_data_url(state.after_data_url)
    name = f"{stem or f'ageme-{int(time.time() * 1000)}'}{_EXTENSIONS.get(mime, '.png')}"
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(data)
    return path


class AgeFaceSession:
    """Synchronous transport to ``POST /api/age-face``."""

    def __init__(self, config: ClientConfig, *, transport: httpx.BaseTransport | None = None) -> None:
        self._config = config
        self._http = httpx.Client(timeout=httpx.Timeout(config.timeout_seconds), transport=transport)

    def close(self) -> None:
        self._http.close()

    def generate(self, state: ClientState, params: Mapping[str, Any]) -> ClientState:
        """Submit one generation; a request already in flight is refused."""
        if not state.ready:
            return state if state.in_flight else replace(state, status="Please choose a photo first.")

        debug = self._config.debug
        data, files = build_form(state, params)
        state = replace(
            state,
            in_flight=True,
            status="Generating image...",
            last_debug={"stage": "request", "client": build_client_debug(state, params, self._config.api_url)}
            if debug
            else None,
        )

        headers = {self._config.debug_header: "1"} if debug else {}
        try:
            response = self._http.post(self._config.api_url, data=data, files=files, headers=headers)
        except httpx.HTTPError as exc:
            last_debug = (
                {
                    "stage": "exception",
                    "message": str(exc),
                    "endpoint": self._config.api_url,
                    "prior_debug": state.last_debug,
                }
                if debug
                else None
            )
            return replace(state, in_flight=False, status=f"Error: {exc}", last_debug=last_debug)

        return apply_response(state, response.status_code, parse_json_safely(response.text), debug=debug)

    def __enter__(self) -> "AgeFaceSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001 - standard context manager
        self.close()
