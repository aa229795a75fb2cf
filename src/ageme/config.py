from __future__ import annotations

import os
from pathlib import Path
from typing import List, Literal, Optional, TypeVar

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

DEFAULT_EDITS_URL = "https://api.openai.com/v1/images/edits"
DEFAULT_EDITS_MODEL = "dall-e-2"
MIB = 1024 * 1024


class UpstreamConfig(BaseModel):
    """Settings required to reach the OpenAI image edits endpoint."""

    api_key: str | None = Field(
        default=None,
        description="OpenAI API key; requests fail with CONFIG_ERROR when missing",
    )
    endpoint: str = Field(default=DEFAULT_EDITS_URL, description="Full image edits URL")
    model: str = Field(default=DEFAULT_EDITS_MODEL, description="Model identifier sent upstream")
    output_size: str = Field(
        default="1024x1024",
        pattern=r"^\d+x\d+$",
        description="Requested output resolution",
    )
    probe_size: str = Field(
        default="256x256",
        pattern=r"^\d+x\d+$",
        description="Output resolution used by the capabilities probe",
    )
    send_quality_hint: bool = Field(
        default=False,
        description="Forward the requested quality profile upstream (dall-e-2 rejects it)",
    )
    timeout_seconds: float = Field(
        default=120.0,
        ge=1.0,
        le=600.0,
        description="Transport timeout for the single upstream request",
    )


class LimitsConfig(BaseModel):
    """Inbound upload constraints enforced before any upstream call."""

    max_image_bytes: int = Field(default=4 * MIB, ge=1, description="Per-file byte ceiling")
    input_mime_types: List[str] = Field(
        default_factory=lambda: ["image/png"],
        min_length=1,
        description="Accepted MIME types for the image field",
    )

    @field_validator("input_mime_types")
    @classmethod
    def _image_types_only(cls, value: List[str]) -> List[str]:
        for mime in value:
            if not mime.startswith("image/"):
                raise ValueError(f"'{mime}' is not an image MIME type")
        return value


class CorsConfig(BaseModel):
    """Headers attached to every response."""

    allow_origin: str = Field(default="*")
    allow_methods: str = Field(default="GET, POST, OPTIONS")
    allow_headers: str = Field(default="content-type, authorization, x-ageme-debug")
    max_age: int = Field(default=86400, ge=0)


class PolicyConfig(BaseModel):
    """Server-side strategy selection."""

    prompt_policy: Literal["standard", "emphasized"] = Field(default="emphasized")
    debug_header: str = Field(default="x-ageme-debug", min_length=1)


class AppConfig(BaseModel):
    """Top-level configuration consumed by the API application."""

    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    cors: CorsConfig = Field(default_factory=CorsConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    log_level: str = Field(default="INFO")


class ClientConfig(BaseModel):
    """Settings for the client-side preparation and submission flow."""

    api_url: str = Field(default="http://127.0.0.1:8000/api/age-face")
    normalization_policy: Literal["square_png", "max_edge_jpeg"] = Field(default="square_png")
    max_edge: int = Field(default=2048, ge=16)
    jpeg_quality: int = Field(default=92, ge=1, le=95)
    square_sizes: List[int] = Field(default_factory=lambda: [1024, 768, 512, 256], min_length=1)
    max_source_bytes: int = Field(default=8 * MIB, ge=1, description="Original upload ceiling")
    max_upload_bytes: int = Field(default=4 * MIB, ge=1, description="Normalized upload ceiling")
    mask_policy: Literal["regions", "full", "none"] = Field(default="regions")
    on_failure: Literal["use_original", "fail"] = Field(
        default="use_original",
        description="Reaction when normalization fails",
    )
    debug: bool = Field(default=False)
    debug_header: str = Field(default="x-ageme-debug")
    timeout_seconds: float = Field(default=180.0, ge=1.0)

    @field_validator("square_sizes")
    @classmethod
    def _descending_sizes(cls, value: List[int]) -> List[int]:
        if any(size < 1 for size in value):
            raise ValueError("square sizes must be positive")
        return sorted(value, reverse=True)


def _bool_from_env(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _float_from_env(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid float value: {value}") from exc


def _int_from_env(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer value: {value}") from exc


def _list_from_env(value: Optional[str], default: List[str]) -> List[str]:
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def _seed_env(dotenv_path: str | Path | None) -> None:
    env_path = Path(dotenv_path) if dotenv_path else Path(".env")
    if env_path.exists():
        load_dotenv(env_path)


ModelT = TypeVar("ModelT", bound=BaseModel)


def _validate(model: type[ModelT], data: dict[str, object]) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        invalid = {"/".join(str(part) for part in err["loc"]) for err in exc.errors()}
        invalid_str = ", ".join(sorted(invalid))
        raise RuntimeError(f"Invalid configuration values: {invalid_str}") from exc


def load_config(dotenv_path: str | Path | None = None) -> AppConfig:
    """
    Load server configuration from environment variables (optionally seeded by a .env file).

    The API key may be absent; handlers report CONFIG_ERROR per request instead of
    refusing to start, so the capabilities route stays available.

    Raises
    ------
    RuntimeError
        If a configuration value is malformed.
    """
    _seed_env(dotenv_path)

    data = {
        "upstream": {
            "api_key": os.getenv("OPENAI_API_KEY") or None,
            "endpoint": os.getenv("OPENAI_IMAGE_EDITS_URL", DEFAULT_EDITS_URL),
            "model": os.getenv("OPENAI_EDITS_MODEL", DEFAULT_EDITS_MODEL),
            "output_size": os.getenv("AGEME_OUTPUT_SIZE", "1024x1024"),
            "send_quality_hint": _bool_from_env(os.getenv("AGEME_SEND_QUALITY_HINT"), False),
            "timeout_seconds": _float_from_env(os.getenv("AGEME_UPSTREAM_TIMEOUT"), 120.0),
        },
        "limits": {
            "max_image_bytes": _int_from_env(os.getenv("AGEME_MAX_IMAGE_BYTES"), 4 * MIB),
            "input_mime_types": _list_from_env(os.getenv("AGEME_INPUT_MIME_TYPES"), ["image/png"]),
        },
        "cors": {
            "allow_origin": os.getenv("CORS_ORIGIN", "*"),
        },
        "policy": {
            "prompt_policy": os.getenv("AGEME_PROMPT_POLICY", "emphasized"),
            "debug_header": os.getenv("AGEME_DEBUG_HEADER", "x-ageme-debug").lower(),
        },
        "log_level": os.getenv("AGEME_LOG_LEVEL", "INFO").upper(),
    }

    return _validate(AppConfig, data)


def load_client_config(dotenv_path: str | Path | None = None) -> ClientConfig:
    """Load client settings from ``AGEME_CLIENT_*`` environment variables."""
    _seed_env(dotenv_path)

    data: dict[str, object] = {
        "api_url": os.getenv("AGEME_API_URL", "http://127.0.0.1:8000/api/age-face"),
        "normalization_policy": os.getenv("AGEME_CLIENT_NORMALIZATION", "square_png"),
        "max_edge": _int_from_env(os.getenv("AGEME_CLIENT_MAX_EDGE"), 2048),
        "mask_policy": os.getenv("AGEME_CLIENT_MASK", "regions"),
        "on_failure": os.getenv("AGEME_CLIENT_ON_FAILURE", "use_original"),
        "debug": _bool_from_env(os.getenv("AGEME_CLIENT_DEBUG"), False),
        "debug_header": os.getenv("AGEME_DEBUG_HEADER", "x-ageme-debug").lower(),
        "timeout_seconds": _float_from_env(os.getenv("AGEME_CLIENT_TIMEOUT"), 180.0),
    }

    return _validate(ClientConfig, data)
