"""
HTTP surface of the age editing proxy.
"""
from .app import create_app

__all__ = ["create_app"]
