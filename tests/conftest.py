from __future__ import annotations

import base64
import io
from typing import Any, Callable, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from ageme.api.app import create_app
from ageme.config import AppConfig, UpstreamConfig

ONE_PIXEL_PNG_B64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mP8/x8AAwMCAO7Zb+0AAAAASUVORK5CYII="
)


def make_image_bytes(
    size: tuple[int, int] = (500, 500),
    fmt: str = "PNG",
    color: tuple[int, int, int] = (180, 140, 120),
) -> bytes:
    with io.BytesIO() as buffer:
        Image.new("RGB", size, color).save(buffer, format=fmt)
        return buffer.getvalue()


@pytest.fixture
def valid_params() -> Dict[str, Any]:
    return {
        "age_delta": 10,
        "intensity": 0.5,
        "hair_color": "preserve",
        "glasses": "preserve",
        "baldness": 0,
        "blemish_fix": 0,
        "skin_texture": 0,
        "quality": "medium",
        "preserve_identity": True,
    }


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes()


class UpstreamStub:
    """Records outbound requests and answers with a configurable response."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.respond: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(
            200, json={"created": 1, "data": [{"b64_json": ONE_PIXEL_PNG_B64}]}
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def last_body(self) -> bytes:
        return self.requests[-1].content


@pytest.fixture
def upstream() -> UpstreamStub:
    return UpstreamStub()


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(upstream=UpstreamConfig(api_key="test-key"))


@pytest.fixture
def make_client(upstream: UpstreamStub) -> Callable[[AppConfig], TestClient]:
    def factory(app_config: AppConfig) -> TestClient:
        return TestClient(create_app(app_config, transport=upstream.transport))

    return factory


@pytest.fixture
def client(make_client: Callable[[AppConfig], TestClient], config: AppConfig) -> TestClient:
    return make_client(config)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
