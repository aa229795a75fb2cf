from __future__ import annotations

import io
from typing import Tuple

from fastapi import Request
from PIL import Image, UnidentifiedImageError
from starlette.datastructures import UploadFile

from ..config import LimitsConfig
from ..diagnostics import DebugRecorder, describe_input
from ..errors import InvalidInputError
from ..params import AgeParams, parse_params
from ..types import UploadBundle, UploadPayload


def _size_label(limit: int) -> str:
    return f"{limit / (1024 * 1024):g}MB"


def _pixel_size(data: bytes, label: str) -> Tuple[int, int]:
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise InvalidInputError(f"{label} could not be decoded") from exc


async def _payload(upload: UploadFile, fallback_name: str) -> UploadPayload:
    data = await upload.read()
    return UploadPayload(
        data=data,
        content_type=(upload.content_type or "").lower(),
        filename=upload.filename or fallback_name,
    )


async def read_age_face_form(
    request: Request,
    limits: LimitsConfig,
    recorder: DebugRecorder,
) -> Tuple[UploadBundle, AgeParams]:
    """
    Parse and validate the multipart body of ``POST /api/age-face``.

    Checks run in a fixed order (image, mask, dimensions, params) and the first
    failure is raised as ``InvalidInputError``.
    """
    try:
        form = await request.form()
    except Exception as exc:
        raise InvalidInputError("request body must be multipart/form-data") from exc

    image_field = form.get("image")
    if not isinstance(image_field, UploadFile):
        raise InvalidInputError("image is required")

    bundle = UploadBundle(image=await _payload(image_field, "input.png"))
    recorder.record("input", describe_input(bundle, None))

    image = bundle.image
    if image.content_type not in limits.input_mime_types:
        allowed = ", ".join(limits.input_mime_types)
        raise InvalidInputError(f"image must be one of: {allowed}")
    if image.size > limits.max_image_bytes:
        raise InvalidInputError(f"image exceeds {_size_label(limits.max_image_bytes)}")

    mask_field = form.get("mask")
    if mask_field is not None:
        if not isinstance(mask_field, UploadFile):
            raise InvalidInputError("mask must be a file when provided")
        bundle.mask = await _payload(mask_field, "mask.png")
        recorder.record("input", describe_input(bundle, None))
        if bundle.mask.content_type != "image/png":
            raise InvalidInputError("mask must be image/png")
        if bundle.mask.size > limits.max_image_bytes:
            raise InvalidInputError(f"mask exceeds {_size_label(limits.max_image_bytes)}")

        image_size = _pixel_size(image.data, "image")
        mask_size = _pixel_size(bundle.mask.data, "mask")
        if image_size != mask_size:
            raise InvalidInputError(
                f"mask dimensions {mask_size[0]}x{mask_size[1]} must match "
                f"image dimensions {image_size[0]}x{image_size[1]}"
            )

    params = parse_params(form.get("params"))
    recorder.record("input", describe_input(bundle, params))
    return bundle, params
