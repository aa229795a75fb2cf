"""
Portrait age editing proxy for the OpenAI image edits endpoint.
"""
__version__ = "0.1.0"

from .config import load_client_config, load_config  # noqa: E402
from .params import AgeParams, validate_params  # noqa: E402
from .prompting import build_prompt  # noqa: E402

__all__ = ["AgeParams", "build_prompt", "load_client_config", "load_config", "validate_params", "__version__"]
