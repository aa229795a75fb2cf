from __future__ import annotations

import io
import os

import pytest
from PIL import Image

from ageme.config import ClientConfig
from ageme.errors import NormalizationError, UploadRejectedError
from ageme.imaging.normalize import (
    check_source,
    compute_scale,
    normalize_max_edge_jpeg,
    normalize_square_png,
    normalize_upload,
    replace_extension,
)
from ageme.types import UploadPayload
from conftest import make_image_bytes


def _payload(data: bytes, content_type: str = "image/png", filename: str = "portrait.png") -> UploadPayload:
    return UploadPayload(data=data, content_type=content_type, filename=filename)


def _open(payload: UploadPayload) -> Image.Image:
    with Image.open(io.BytesIO(payload.data)) as image:
        image.load()
        return image


def _noise_png(side: int) -> bytes:
    image = Image.frombytes("RGB", (side, side), os.urandom(side * side * 3))
    with io.BytesIO() as buffer:
        image.save(buffer, format="PNG")
        return buffer.getvalue()


def test_compute_scale_never_upscales():
    assert compute_scale(3000, 1500, 2048) == pytest.approx(2048 / 3000)
    assert compute_scale(100, 50, 2048) == 1.0


def test_replace_extension():
    assert replace_extension("me.HEIC", ".jpg") == "me.jpg"
    assert replace_extension("noext", ".png") == "noext.png"
    assert replace_extension("", ".png") == "upload.png"


def test_max_edge_jpeg_downscales_longer_edge():
    result = normalize_max_edge_jpeg(
        _payload(make_image_bytes((3000, 1500))), max_edge=2048, quality=92
    )
    assert result.payload.content_type == "image/jpeg"
    assert result.payload.filename == "portrait.jpg"
    assert result.content_size == (2048, 1024)
    image = _open(result.payload)
    assert image.format == "JPEG"
    assert image.size == (2048, 1024)


def test_max_edge_jpeg_keeps_small_images():
    result = normalize_max_edge_jpeg(_payload(make_image_bytes((640, 480))), max_edge=2048, quality=92)
    assert result.scale == 1.0
    assert _open(result.payload).size == (640, 480)


def test_square_png_pads_to_square_canvas():
    result = normalize_square_png(
        _payload(make_image_bytes((2000, 1000))), sizes=[1024, 512], max_bytes=4 * 1024 * 1024
    )
    assert result.canvas_size == (1024, 1024)
    assert result.content_size == (1024, 512)
    image = _open(result.payload)
    assert image.format == "PNG"
    assert image.size == (1024, 1024)
    # Padding above the content band is opaque white.
    assert image.getpixel((512, 10)) == (255, 255, 255, 255)
    centre = image.getpixel((512, 512))
    assert all(abs(got - want) <= 1 for got, want in zip(centre[:3], (180, 140, 120)))


def test_square_png_does_not_enlarge():
    result = normalize_square_png(_payload(make_image_bytes((500, 500))), sizes=[1024, 768], max_bytes=4 * 1024 * 1024)
    assert result.canvas_size == (500, 500)
    assert result.scale == 1.0


def test_square_png_steps_down_until_it_fits():
    result = normalize_square_png(_payload(_noise_png(512)), sizes=[512, 256], max_bytes=400_000)
    assert result.canvas_size == (256, 256)
    assert result.payload.size <= 400_000


def test_square_png_gives_up_when_nothing_fits():
    with pytest.raises(NormalizationError, match="Could not fit image"):
        normalize_square_png(_payload(make_image_bytes((64, 64))), sizes=[64, 32], max_bytes=10)


def test_exif_orientation_is_applied():
    image = Image.new("RGB", (300, 200), (10, 20, 30))
    exif = image.getexif()
    exif[0x0112] = 6
    with io.BytesIO() as buffer:
        image.save(buffer, format="JPEG", exif=exif)
        data = buffer.getvalue()

    result = normalize_max_edge_jpeg(_payload(data, "image/jpeg", "photo.jpg"), max_edge=2048, quality=90)
    assert result.source_size == (200, 300)


def test_undecodable_bytes_raise_normalization_error():
    with pytest.raises(NormalizationError):
        normalize_max_edge_jpeg(_payload(b"not an image"), max_edge=2048, quality=90)


def test_check_source_rejects_non_images():
    with pytest.raises(UploadRejectedError, match="Please upload a valid image file."):
        check_source(_payload(b"hello", "text/plain", "notes.txt"), 8 * 1024 * 1024)


def test_check_source_rejects_oversized_files():
    with pytest.raises(UploadRejectedError, match="File exceeds 8 MB"):
        check_source(_payload(b"x" * (8 * 1024 * 1024 + 1)), 8 * 1024 * 1024)


def test_normalize_upload_dispatches_on_policy():
    payload = _payload(make_image_bytes((300, 200)))
    assert normalize_upload(payload, ClientConfig()).policy == "square_png"
    jpeg = normalize_upload(payload, ClientConfig(normalization_policy="max_edge_jpeg"))
    assert jpeg.policy == "max_edge_jpeg"
    assert jpeg.payload.content_type == "image/jpeg"
