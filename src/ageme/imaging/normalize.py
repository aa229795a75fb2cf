from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from typing import Sequence, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from ..config import ClientConfig
from ..errors import NormalizationError, UploadRejectedError
from ..types import UploadPayload

logger = logging.getLogger(__name__)

_LANCZOS = Image.Resampling.LANCZOS
_EXTENSION = re.compile(r"\.[a-z0-9]+$", re.IGNORECASE)

PAD_COLOR: Tuple[int, int, int] = (255, 255, 255)


@dataclass(frozen=True, slots=True)
class NormalizedUpload:
    """Upload-ready image plus the geometry that produced it."""

    payload: UploadPayload
    source_size: Tuple[int, int]
    content_size: Tuple[int, int]
    canvas_size: Tuple[int, int]
    scale: float
    policy: str


def check_source(payload: UploadPayload, max_source_bytes: int) -> None:
    """Reject files the user should replace before anything is decoded."""
    if not payload.content_type.startswith("image/"):
        raise UploadRejectedError("Please upload a valid image file.")
    if payload.size > max_source_bytes:
        limit_mb = max_source_bytes / (1024 * 1024)
        raise UploadRejectedError(f"File exceeds {limit_mb:g} MB. Please use a smaller image.")


def compute_scale(width: int, height: int, max_edge: int) -> float:
    """Downscale factor fitting the longer edge into ``max_edge``; never above 1."""
    return min(1.0, max_edge / max(width, height))


def scaled_size(width: int, height: int, scale: float) -> Tuple[int, int]:
    return max(1, round(width * scale)), max(1, round(height * scale))


def replace_extension(filename: str, extension: str) -> str:
    stem = _EXTENSION.sub("", filename or "upload") or "upload"
    return f"{stem}{extension}"


def decode_image(data: bytes) -> Image.Image:
    """Decode and apply EXIF orientation, the way browsers render uploads."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            return ImageOps.exif_transpose(image)
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise NormalizationError("Could not decode uploaded image.") from exc


def _encode(image: Image.Image, fmt: str, **options: object) -> bytes:
    try:
        with io.BytesIO() as buffer:
            image.save(buffer, format=fmt, **options)
            return buffer.getvalue()
    except (OSError, ValueError) as exc:
        raise NormalizationError("Failed to re-encode image for upload.") from exc


def _flatten(image: Image.Image) -> Image.Image:
    rgba = image.convert("RGBA")
    background = Image.new("RGBA", rgba.size, PAD_COLOR + (255,))
    background.alpha_composite(rgba)
    return background


def normalize_max_edge_jpeg(payload: UploadPayload, *, max_edge: int, quality: int) -> NormalizedUpload:
    """Resize so the longer edge fits ``max_edge`` and re-encode as JPEG."""
    image = decode_image(payload.data)
    scale = compute_scale(image.width, image.height, max_edge)
    target = scaled_size(image.width, image.height, scale)

    resized = image if target == image.size else image.resize(target, _LANCZOS)
    data = _encode(_flatten(resized).convert("RGB"), "JPEG", quality=quality)

    return NormalizedUpload(
        payload=UploadPayload(
            data=data,
            content_type="image/jpeg",
            filename=replace_extension(payload.filename, ".jpg"),
        ),
        source_size=image.size,
        content_size=target,
        canvas_size=target,
        scale=scale,
        policy="max_edge_jpeg",
    )


def normalize_square_png(
    payload: UploadPayload,
    *,
    sizes: Sequence[int],
    max_bytes: int,
) -> NormalizedUpload:
    """
    Fit the photo on an opaque square canvas and encode it as PNG.

    Candidate sizes are tried largest first until the encoded PNG is at or
    under ``max_bytes``. Images already smaller than a candidate are padded,
    not enlarged.
    """
    image = decode_image(payload.data)
    rgba = image.convert("RGBA")

    for size in sorted(sizes, reverse=True):
        scale = compute_scale(rgba.width, rgba.height, size)
        content = scaled_size(rgba.width, rgba.height, scale)
        side = max(content)

        resized = rgba if content == rgba.size else rgba.resize(content, _LANCZOS)
        canvas = Image.new("RGBA", (side, side), PAD_COLOR + (255,))
        offset = ((side - content[0]) // 2, (side - content[1]) // 2)
        canvas.alpha_composite(resized, dest=offset)

        data = _encode(canvas, "PNG", optimize=True)
        logger.debug("Square candidate %s -> %sx%s, %s bytes", size, side, side, len(data))
        if len(data) <= max_bytes:
            return NormalizedUpload(
                payload=UploadPayload(
                    data=data,
                    content_type="image/png",
                    filename=replace_extension(payload.filename, ".png"),
                ),
                source_size=image.size,
                content_size=content,
                canvas_size=(side, side),
                scale=scale,
                policy="square_png",
            )

    limit_mb = max_bytes / (1024 * 1024)
    raise NormalizationError(f"Could not fit image under {limit_mb:g} MB at any supported size.")


def normalize_upload(payload: UploadPayload, config: ClientConfig) -> NormalizedUpload:
    """Apply the configured normalization policy to an accepted source file."""
    check_source(payload, config.max_source_bytes)
    if config.normalization_policy == "max_edge_jpeg":
        return normalize_max_edge_jpeg(payload, max_edge=config.max_edge, quality=config.jpeg_quality)
    return normalize_square_png(payload, sizes=config.square_sizes, max_bytes=config.max_upload_bytes)
