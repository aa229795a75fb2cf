"""
Error taxonomy shared by the API boundary and the client.

Every handled failure maps to one closed error code and one HTTP status.
"""
from __future__ import annotations

from typing import Any, Dict


class AgeMeError(Exception):
    """Base class for failures that become an ``{"error": {...}}`` envelope."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


class NotFoundError(AgeMeError):
    code = "NOT_FOUND"
    status_code = 404


class ConfigError(AgeMeError):
    code = "CONFIG_ERROR"
    status_code = 500


class InvalidInputError(AgeMeError):
    code = "INVALID_INPUT"
    status_code = 400


class UpstreamError(AgeMeError):
    """Upstream rejected the request, was unreachable, or returned nothing usable."""

    code = "UPSTREAM_ERROR"
    status_code = 502


class InternalError(AgeMeError):
    code = "INTERNAL_ERROR"
    status_code = 500


class UploadRejectedError(ValueError):
    """Client-side rejection of a local file; the message is shown to the user as-is."""


class NormalizationError(RuntimeError):
    """Client-side decode/resize/encode failure."""
