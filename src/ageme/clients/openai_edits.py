from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Tuple

import httpx

from ..config import UpstreamConfig
from ..errors import ConfigError, UpstreamError
from ..types import UploadBundle, UpstreamExchange

logger = logging.getLogger(__name__)

FileField = Tuple[str, Tuple[str, bytes, str]]


def _parse_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        parsed = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {"raw_text": response.text[:2000]} if response.content else {}
    if isinstance(parsed, dict):
        return parsed
    return {"raw_body": parsed}


class OpenAIImageEditClient:
    """
    Client for the OpenAI ``/v1/images/edits`` endpoint.

    Each call to :meth:`edit` issues exactly one request. Failures are never
    retried here; the caller decides what to surface.
    """

    def __init__(
        self,
        config: UpstreamConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not config.api_key:
            raise ConfigError("Missing OPENAI_API_KEY")

        self._config = config
        self._endpoint = httpx.URL(config.endpoint)
        self._session = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(config.timeout_seconds),
            transport=transport,
        )

    @property
    def endpoint(self) -> str:
        return str(self._endpoint)

    @property
    def model(self) -> str:
        return self._config.model

    async def aclose(self) -> None:
        await self._session.aclose()

    def build_form(
        self,
        bundle: UploadBundle,
        prompt: str,
        *,
        size: str | None = None,
        quality: str | None = None,
    ) -> Tuple[Dict[str, str], List[FileField]]:
        """Return the text fields and file parts of the multipart submission."""
        data_fields: Dict[str, str] = {
            "model": self._config.model,
            "prompt": prompt,
            "size": size or self._config.output_size,
            "response_format": "b64_json",
        }
        if quality is not None and self._config.send_quality_hint:
            data_fields["quality"] = quality

        image = bundle.image
        files: List[FileField] = [
            ("image", (image.filename or "input.png", image.data, image.content_type)),
        ]
        if bundle.mask is not None:
            mask = bundle.mask
            files.append(("mask", (mask.filename or "mask.png", mask.data, mask.content_type)))
        return data_fields, files

    async def edit(
        self,
        bundle: UploadBundle,
        prompt: str,
        *,
        size: str | None = None,
        quality: str | None = None,
    ) -> UpstreamExchange:
        """
        Submit one edit request and capture status, timing and diagnostic headers.

        Non-2xx responses are returned, not raised, so the caller can pass the
        upstream status through. Transport failures raise ``UpstreamError``.
        """
        data_fields, files = self.build_form(bundle, prompt, size=size, quality=quality)

        started = time.perf_counter()
        try:
            response = await self._session.post(self._endpoint, data=data_fields, files=files)
        except httpx.TransportError as exc:
            logger.warning("Upstream transport failure for %s: %s", self._endpoint, exc)
            raise UpstreamError(f"Upstream request failed: {exc}", status_code=502) from exc

        body = _parse_body(response)
        exchange = UpstreamExchange(
            status_code=response.status_code,
            status_text=response.reason_phrase,
            elapsed_ms=int(round((time.perf_counter() - started) * 1000)),
            body=body,
            request_id=response.headers.get("x-request-id"),
            processing_ms=response.headers.get("openai-processing-ms"),
        )
        logger.info(
            "Upstream %s responded %s in %sms (request id %s)",
            self._config.model,
            exchange.status_code,
            exchange.elapsed_ms,
            exchange.request_id,
        )
        return exchange

    async def __aenter__(self) -> "OpenAIImageEditClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001 - standard context manager
        await self.aclose()
