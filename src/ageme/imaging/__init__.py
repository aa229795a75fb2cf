"""
Client-side image preparation: upload normalization and edit masks.
"""
from .masks import build_edit_mask, editable_regions, encode_mask
from .normalize import NormalizedUpload, normalize_upload

__all__ = ["NormalizedUpload", "build_edit_mask", "editable_regions", "encode_mask", "normalize_upload"]
