"""Generation provider adapters."""

from .base import GenerationProvider, TextGenerator
from .mock_provider import MockGenerationProvider

__all__ = [
    "GenerationProvider",
    "MockGenerationProvider",
    "TextGenerator",
]
