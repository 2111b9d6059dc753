"""Content generator implementations."""

from coursegen.ai.providers.base import ContentGenerator, GenerationUsage
from coursegen.ai.providers.gemini import GeminiContentGenerator

__all__ = ["ContentGenerator", "GenerationUsage", "GeminiContentGenerator"]
