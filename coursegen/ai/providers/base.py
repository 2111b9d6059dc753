"""Base interface for content generators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class GenerationUsage:
  """Token accounting for one generator call, when the backend reports it."""

  prompt_tokens: int | None = None
  completion_tokens: int | None = None
  total_tokens: int | None = None


class ContentGenerator(ABC):
  """Opaque capability: turn a prompt into text or fail with a classified error.

  Implementations raise TransientGenerationError or FatalGenerationError and never retry on their own;
  retry policy belongs to the orchestrator.
  """

  name: str

  @abstractmethod
  async def generate(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
    """Generate text for the prompt."""
