"""
Client adapters for the upstream image edit provider.
"""
from .openai_edits import OpenAIImageEditClient

__all__ = ["OpenAIImageEditClient"]
