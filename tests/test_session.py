from __future__ import annotations

import base64
import json
from dataclasses import replace

import httpx
import pytest

from ageme.config import ClientConfig
from ageme.session import (
    AgeFaceSession,
    ClientState,
    apply_response,
    attach_mask,
    build_params,
    load_photo,
    normalize_image_data_url,
    parse_json_safely,
    save_result,
)
from ageme.types import UploadPayload
from conftest import ONE_PIXEL_PNG_B64, make_image_bytes

DATA_URL = f"data:image/png;base64,{ONE_PIXEL_PNG_B64}"


def _photo(data: bytes | None = None, content_type: str = "image/png", name: str = "me.png") -> UploadPayload:
    return UploadPayload(data=data if data is not None else make_image_bytes(), content_type=content_type, filename=name)


@pytest.fixture
def loaded() -> ClientState:
    return load_photo(ClientState(), _photo(), ClientConfig())


def test_load_photo_normalizes(loaded):
    assert loaded.source.filename == "me.png"
    assert loaded.upload.content_type == "image/png"
    assert loaded.normalized.canvas_size == (500, 500)
    assert loaded.status == "Photo loaded. Adjust settings and click Generate."
    assert loaded.ready


def test_load_photo_rejects_non_images():
    state = load_photo(ClientState(), _photo(b"hello", "text/plain", "notes.txt"), ClientConfig())
    assert state.status == "Please upload a valid image file."
    assert state.upload is None
    assert not state.ready


def test_load_photo_clears_previous_result(loaded):
    done = apply_response(loaded, 200, {"image_data_url": DATA_URL}, debug=False)
    reloaded = load_photo(done, _photo(name="second.png"), ClientConfig())
    assert reloaded.after_data_url == ""
    assert reloaded.source.filename == "second.png"


def test_normalization_failure_falls_back_to_original():
    photo = _photo(b"\x89PNG not really")
    state = load_photo(ClientState(), photo, ClientConfig())
    assert state.upload is photo
    assert state.normalized is None
    assert state.status.startswith("Photo loaded. Using original upload")


def test_mask_skipped_when_original_cannot_be_decoded(valid_params):
    state = load_photo(ClientState(), _photo(b"\x89PNG not really"), ClientConfig())
    masked = attach_mask(state, valid_params, ClientConfig())
    assert masked.mask is None
    assert masked.upload is state.upload
    assert masked.status.endswith("Sending without an edit mask.")


def test_normalization_failure_can_be_fatal():
    state = load_photo(ClientState(), _photo(b"\x89PNG not really"), ClientConfig(on_failure="fail"))
    assert state.upload is None
    assert state.status == "Error: Could not decode uploaded image."


def test_build_params_orders_and_requires_fields(valid_params):
    reordered = dict(reversed(list(valid_params.items())))
    assert list(build_params(reordered)) == list(valid_params)
    with pytest.raises(KeyError):
        build_params({"age_delta": 5})


def test_attach_mask_matches_upload_canvas(loaded, valid_params):
    state = attach_mask(loaded, valid_params, ClientConfig())
    assert state.mask is not None
    assert state.mask.content_type == "image/png"


def test_attach_mask_skipped_for_jpeg_uploads(valid_params):
    config = ClientConfig(normalization_policy="max_edge_jpeg")
    state = attach_mask(load_photo(ClientState(), _photo(), config), valid_params, config)
    assert state.upload.content_type == "image/jpeg"
    assert state.mask is None


def test_attach_mask_disabled_by_policy(loaded, valid_params):
    assert attach_mask(loaded, valid_params, ClientConfig(mask_policy="none")).mask is None


def test_normalize_image_data_url_variants():
    assert normalize_image_data_url({"image_data_url": DATA_URL}) == DATA_URL
    assert normalize_image_data_url({"image_base64": DATA_URL}) == DATA_URL
    assert (
        normalize_image_data_url({"image_base64": "AAAA\nBBBB", "mime_type": "image/webp"})
        == "data:image/webp;base64,AAAABBBB"
    )
    assert normalize_image_data_url({"image_base64": "AAAA", "mime_type": "text/plain"}) == (
        "data:image/png;base64,AAAA"
    )
    with pytest.raises(ValueError):
        normalize_image_data_url({"id": "x"})


def test_parse_json_safely():
    assert parse_json_safely("") == {}
    assert parse_json_safely("<html>") == {"raw_text": "<html>"}
    assert parse_json_safely("[1]") == {"raw_body": [1]}
    assert parse_json_safely('{"a": 1}') == {"a": 1}


def test_error_response_sets_status(loaded):
    state = apply_response(
        loaded, 400, {"error": {"code": "INVALID_INPUT", "message": "glasses is required"}}, debug=True
    )
    assert state.status == "Error: glasses is required"
    assert state.last_debug["http_status"] == 400
    assert state.after_data_url == ""


def test_save_result(loaded, tmp_path):
    done = apply_response(loaded, 200, {"image_data_url": DATA_URL}, debug=False)
    path = save_result(done, tmp_path, stem="result")
    assert path.name == "result.png"
    assert path.read_bytes() == base64.b64decode(ONE_PIXEL_PNG_B64)


def test_save_result_requires_output(loaded, tmp_path):
    with pytest.raises(ValueError):
        save_result(loaded, tmp_path)


class ApiStub:
    def __init__(self, response: httpx.Response | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.response = response or httpx.Response(
            200,
            json={
                "id": "res_1",
                "image_base64": ONE_PIXEL_PNG_B64,
                "mime_type": "image/png",
                "image_data_url": DATA_URL,
                "meta": {"model": "dall-e-2", "quality": "medium", "elapsed_ms": 10},
                "debug": {"prompt": "Edit the provided portrait photo."},
            },
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


def test_session_generate_success(loaded, valid_params):
    stub = ApiStub()
    state = attach_mask(loaded, valid_params, ClientConfig())
    with AgeFaceSession(ClientConfig(), transport=httpx.MockTransport(stub)) as session:
        result = session.generate(state, build_params(valid_params))

    assert result.status == "Done. Result ready."
    assert result.after_data_url == DATA_URL
    assert not result.in_flight
    assert result.last_debug is None

    sent = stub.requests[0]
    assert str(sent.url) == "http://127.0.0.1:8000/api/age-face"
    assert "x-ageme-debug" not in sent.headers
    body = sent.read()
    assert b'name="image"; filename="me.png"' in body
    assert b'name="mask"; filename="mask.png"' in body
    assert json.dumps(build_params(valid_params)).encode() in body


def test_session_generate_debug(loaded, valid_params):
    stub = ApiStub()
    with AgeFaceSession(ClientConfig(debug=True), transport=httpx.MockTransport(stub)) as session:
        result = session.generate(loaded, build_params(valid_params))

    assert stub.requests[0].headers["x-ageme-debug"] == "1"
    assert result.last_debug["stage"] == "success-response"
    assert result.last_debug["server_debug"] == {"prompt": "Edit the provided portrait photo."}


def test_session_generate_error(loaded, valid_params):
    stub = ApiStub(httpx.Response(502, json={"error": {"code": "UPSTREAM_ERROR", "message": "No image output returned by model"}}))
    with AgeFaceSession(ClientConfig(), transport=httpx.MockTransport(stub)) as session:
        result = session.generate(loaded, build_params(valid_params))
    assert result.status == "Error: No image output returned by model"


def test_session_transport_failure(loaded, valid_params):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    with AgeFaceSession(ClientConfig(debug=True), transport=httpx.MockTransport(refuse)) as session:
        result = session.generate(loaded, build_params(valid_params))
    assert result.status == "Error: connection refused"
    assert result.last_debug["stage"] == "exception"
    assert result.last_debug["prior_debug"]["stage"] == "request"


def test_session_refuses_concurrent_and_empty_submissions(loaded, valid_params):
    stub = ApiStub()
    with AgeFaceSession(ClientConfig(), transport=httpx.MockTransport(stub)) as session:
        busy = replace(loaded, in_flight=True)
        assert session.generate(busy, build_params(valid_params)) is busy
        empty = session.generate(ClientState(), build_params(valid_params))
    assert empty.status == "Please choose a photo first."
    assert stub.requests == []
