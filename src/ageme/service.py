from __future__ import annotations

import logging
import time
from typing import Any, Dict

import httpx

from .clients.openai_edits import OpenAIImageEditClient
from .config import AppConfig
from .diagnostics import DebugRecorder, describe_exchange, describe_output
from .errors import ConfigError, UpstreamError
from .params import AgeParams
from .prompting import build_prompt
from .responses import build_success_envelope, extract_error_message, normalize_generation
from .types import UploadBundle

logger = logging.getLogger(__name__)


def require_api_key(config: AppConfig) -> None:
    if not config.upstream.api_key:
        raise ConfigError("Missing OPENAI_API_KEY")


async def generate(
    bundle: UploadBundle,
    params: AgeParams,
    config: AppConfig,
    recorder: DebugRecorder,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Dict[str, Any]:
    """
    Run one validated request through the upstream model.

    Returns the success envelope. Upstream rejections keep the upstream status;
    a 2xx answer without an image becomes a 502.
    """
    require_api_key(config)
    prompt = build_prompt(params, config.policy.prompt_policy)
    recorder.record("prompt", prompt)

    started = time.perf_counter()
    async with OpenAIImageEditClient(config.upstream, transport=transport) as client:
        exchange = await client.edit(bundle, prompt, quality=params.quality)
        model = client.model
    recorder.record("upstream", describe_exchange(exchange))

    if not exchange.ok:
        message = extract_error_message(exchange.body) or "OpenAI request failed"
        raise UpstreamError(message, status_code=exchange.status_code)

    result = normalize_generation(
        exchange.body,
        model=model,
        quality=params.quality,
        elapsed_ms=int(round((time.perf_counter() - started) * 1000)),
    )
    recorder.record("output", describe_output(result))
    logger.info("Generated %s image (%s base64 chars)", result.mime_type, len(result.image_base64))
    return build_success_envelope(result)
