"""
AgeMe FastAPI application.

Run with: uvicorn ageme.api.main:app --host 0.0.0.0 --port 8000
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..config import AppConfig, load_config
from ..diagnostics import DebugRecorder
from ..errors import AgeMeError, InternalError, NotFoundError
from ..service import generate, require_api_key
from .capabilities import capabilities_body, run_probe, wants_probe
from .forms import read_age_face_form

logger = logging.getLogger(__name__)

ROUTES: List[Dict[str, str]] = [
    {"method": "GET", "path": "/api/capabilities"},
    {"method": "POST", "path": "/api/age-face"},
    {"method": "GET", "path": "/health"},
]


def cors_headers(config: AppConfig) -> Dict[str, str]:
    cors = config.cors
    allow_headers = cors.allow_headers
    if config.policy.debug_header not in allow_headers.lower():
        allow_headers = f"{allow_headers}, {config.policy.debug_header}"
    return {
        "access-control-allow-origin": cors.allow_origin,
        "access-control-allow-methods": cors.allow_methods,
        "access-control-allow-headers": allow_headers,
        "access-control-max-age": str(cors.max_age),
    }


def is_debug_request(headers: Mapping[str, str], header_name: str) -> bool:
    return headers.get(header_name) == "1"


def create_app(
    config: AppConfig | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    Build the API application.

    ``transport`` replaces the outbound httpx transport, which lets tests and
    local tooling stub the upstream model.
    """
    config = config or load_config()
    headers = cors_headers(config)

    app = FastAPI(
        title="AgeMe API",
        description="Portrait age editing proxy in front of the OpenAI image edits endpoint",
        version=__version__,
    )
    app.state.config = config

    def debug_recorder(request: Request) -> DebugRecorder:
        return DebugRecorder(is_debug_request(request.headers, config.policy.debug_header))

    @app.middleware("http")
    async def cors_and_access_log(request: Request, call_next):  # noqa: ANN001, ANN202
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=headers)

        started = time.perf_counter()
        response = await call_next(request)
        response.headers.update(headers)
        logger.info(
            "%s %s -> %s (%.0fms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    @app.exception_handler(StarletteHTTPException)
    async def unknown_route(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code in (404, 405):
            error: AgeMeError = NotFoundError("Route not found")
        else:
            error = InternalError(str(exc.detail), status_code=exc.status_code)
        body: Dict[str, Any] = error.to_body()
        if isinstance(error, NotFoundError):
            body["available_routes"] = ROUTES
        return JSONResponse(debug_recorder(request).attach(body), status_code=error.status_code)

    @app.get("/health", tags=["Health"])
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "upstream_configured": bool(config.upstream.api_key),
        }

    @app.get("/api/capabilities", tags=["Capabilities"])
    async def capabilities(probe: str | None = None) -> JSONResponse:
        body = capabilities_body(config, ROUTES)
        if not wants_probe(probe):
            return JSONResponse(body)
        try:
            body["probe"], status_code = await run_probe(config, transport=transport)
        except Exception as exc:
            logger.exception("capabilities probe failed unexpectedly")
            error = InternalError(str(exc) or "Unknown error")
            return JSONResponse(error.to_body(), status_code=error.status_code)
        return JSONResponse(body, status_code=status_code)

    @app.post("/api/age-face", tags=["Generation"])
    async def age_face(request: Request) -> JSONResponse:
        recorder = debug_recorder(request)
        try:
            require_api_key(config)
            bundle, params = await read_age_face_form(request, config.limits, recorder)
            body = await generate(bundle, params, config, recorder, transport=transport)
            status_code = 200
        except AgeMeError as exc:
            logger.warning("age-face failed with %s (%s): %s", exc.code, exc.status_code, exc.message)
            body, status_code = exc.to_body(), exc.status_code
        except Exception as exc:
            logger.exception("age-face failed unexpectedly")
            error = InternalError(str(exc) or "Unknown error")
            body, status_code = error.to_body(), error.status_code
        return JSONResponse(recorder.attach(body), status_code=status_code)

    return app
