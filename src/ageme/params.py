"""
Validation of the ``params`` form field.

Every field is required and checked against its closed domain. Nothing is
coerced: numeric strings, booleans in numeric slots and case variants of enum
values are all rejected, and a single bad field rejects the whole object.
"""
from __future__ import annotations

import json
import math
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidInputError

HairColor = Literal["preserve", "black", "brown", "blonde", "red", "gray", "white"]
Glasses = Literal["preserve", "add", "remove"]
Quality = Literal["low", "medium", "high"]

HAIR_COLORS: tuple[str, ...] = ("preserve", "black", "brown", "blonde", "red", "gray", "white")
GLASSES_OPTIONS: tuple[str, ...] = ("preserve", "add", "remove")
QUALITY_OPTIONS: tuple[str, ...] = ("low", "medium", "high")

_FLOAT_FIELDS = ("intensity", "baldness", "blemish_fix", "skin_texture")


def _require_number(value: Any) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError("must be a finite number")
    return value


class AgeParams(BaseModel):
    """Editing controls for one generation."""

    model_config = ConfigDict(strict=True, frozen=True, allow_inf_nan=False, extra="ignore")

    age_delta: int = Field(..., ge=-40, le=40, description="Years to add (negative = younger)")
    intensity: float = Field(..., ge=0.0, le=1.0)
    hair_color: HairColor
    glasses: Glasses
    baldness: float = Field(..., ge=0.0, le=100.0)
    blemish_fix: float = Field(..., ge=0.0, le=100.0)
    skin_texture: float = Field(..., ge=-100.0, le=100.0)
    quality: Quality
    preserve_identity: bool

    @field_validator(*_FLOAT_FIELDS, mode="before")
    @classmethod
    def _finite_number(cls, value: Any) -> Any:
        try:
            return float(_require_number(value))
        except OverflowError as exc:
            raise ValueError("must be a finite number") from exc

    @field_validator("age_delta", mode="before")
    @classmethod
    def _integral_number(cls, value: Any) -> Any:
        value = _require_number(value)
        # JSON clients may send 10.0; anything fractional stays a float and fails strict int.
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value


def _describe(exc: ValidationError) -> str:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "params"
    if first["type"] == "missing":
        return f"{field} is required"
    if first["type"] in {"literal_error", "enum"}:
        return f"{field} is invalid"
    message = first["msg"]
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return f"{field}: {message}"


def validate_params(parsed: Any) -> AgeParams:
    """Turn an already-decoded JSON value into :class:`AgeParams`."""
    if not isinstance(parsed, dict):
        raise InvalidInputError("params must be a JSON object")
    try:
        return AgeParams.model_validate(parsed)
    except ValidationError as exc:
        raise InvalidInputError(_describe(exc)) from exc


def parse_params(raw: Any) -> AgeParams:
    """Decode and validate the raw ``params`` form value."""
    if not isinstance(raw, str):
        raise InvalidInputError("params must be a JSON string")
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidInputError("params must be valid JSON") from exc
    return validate_params(parsed)
