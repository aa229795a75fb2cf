from __future__ import annotations

import io
from dataclasses import dataclass
from typing import List, Literal, Tuple

from PIL import Image, ImageDraw

from ..params import AgeParams
from ..types import UploadPayload

MaskPolicy = Literal["regions", "full", "none"]

PRESERVE = (0, 0, 0, 255)
EDITABLE = (0, 0, 0, 0)

# Fractions of width/height.
EYE_BAND = (0.24, 0.33, 0.76, 0.53)
FACE_CENTER, FACE_RADII = (0.50, 0.50), (0.28, 0.34)
HAIR_CENTER, HAIR_RADII = (0.50, 0.24), (0.26, 0.16)


@dataclass(frozen=True, slots=True)
class Region:
    shape: Literal["rectangle", "ellipse"]
    box: Tuple[int, int, int, int]


def _ellipse_box(
    size: Tuple[int, int],
    center: Tuple[float, float],
    radii: Tuple[float, float],
) -> Tuple[int, int, int, int]:
    width, height = size
    cx, cy = center[0] * width, center[1] * height
    rx, ry = radii[0] * width, radii[1] * height
    return round(cx - rx), round(cy - ry), round(cx + rx), round(cy + ry)


def touches_hair(params: AgeParams) -> bool:
    return params.age_delta != 0 or params.hair_color != "preserve" or params.baldness > 0


def editable_regions(size: Tuple[int, int], params: AgeParams) -> List[Region]:
    """Regions the model may repaint for these parameters, in drawing order."""
    width, height = size
    regions: List[Region] = []

    if params.glasses in {"add", "remove"}:
        left, top, right, bottom = EYE_BAND
        regions.append(
            Region(
                "rectangle",
                (round(left * width), round(top * height), round(right * width), round(bottom * height)),
            )
        )
    else:
        regions.append(Region("ellipse", _ellipse_box(size, FACE_CENTER, FACE_RADII)))

    if touches_hair(params):
        regions.append(Region("ellipse", _ellipse_box(size, HAIR_CENTER, HAIR_RADII)))
    return regions


def build_edit_mask(
    size: Tuple[int, int],
    params: AgeParams,
    policy: MaskPolicy = "regions",
) -> Image.Image | None:
    """
    Build an RGBA mask matching ``size``.

    Opaque black pixels are preserved, transparent pixels are editable. The
    ``full`` policy makes every pixel editable; ``none`` produces no mask.
    """
    if policy == "none":
        return None
    if policy == "full":
        return Image.new("RGBA", size, EDITABLE)

    alpha = Image.new("L", size, 255)
    draw = ImageDraw.Draw(alpha)
    for region in editable_regions(size, params):
        if region.shape == "rectangle":
            draw.rectangle(region.box, fill=0)
        else:
            draw.ellipse(region.box, fill=0)

    mask = Image.new("RGBA", size, PRESERVE)
    mask.putalpha(alpha)
    return mask


def encode_mask(mask: Image.Image, filename: str = "mask.png") -> UploadPayload:
    with io.BytesIO() as buffer:
        mask.save(buffer, format="PNG")
        return UploadPayload(data=buffer.getvalue(), content_type="image/png", filename=filename)
