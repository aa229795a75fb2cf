"""Module-level application for ``uvicorn ageme.api.main:app``."""
from __future__ import annotations

from ..config import load_config
from ..log import configure_logging
from .app import create_app

config = load_config()
configure_logging(config.log_level)
app = create_app(config)
