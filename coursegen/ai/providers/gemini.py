"""Gemini content generator using the google-genai SDK."""

from __future__ import annotations

import logging
import warnings
from typing import Final

from pydantic.warnings import ArbitraryTypeWarning

with warnings.catch_warnings():
  warnings.filterwarnings("ignore", message=r"<built-in function any> is not a Python type.*", category=ArbitraryTypeWarning)
  from google import genai
  from google.genai import errors as genai_errors
  from google.genai import types

from coursegen.ai.errors import classify_generation_error
from coursegen.ai.providers.base import ContentGenerator, GenerationUsage
from coursegen.core.errors import FatalGenerationError, TransientGenerationError

logger = logging.getLogger(__name__)

# HTTP statuses from the Gemini API that are worth another attempt.
_RETRYABLE_STATUS_CODES: Final[frozenset[int]] = frozenset({408, 429, 500, 502, 503, 504})


class GeminiContentGenerator(ContentGenerator):
  """Gemini model client requesting JSON output."""

  _AVAILABLE_MODELS: Final[set[str]] = {"gemini-2.5-pro", "gemini-2.5-flash", "gemini-2.5-flash-lite", "gemini-2.0-flash", "gemini-2.0-flash-lite"}

  def __init__(self, model: str, api_key: str | None) -> None:
    if model not in self._AVAILABLE_MODELS:
      raise ValueError(f"Unsupported Gemini model '{model}'.")
    if not api_key:
      raise ValueError("GEMINI_API_KEY environment variable is required")

    self.name: str = model
    self._client = genai.Client(api_key=api_key)
    self.last_usage: GenerationUsage | None = None

  async def generate(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
    """Generate a JSON text response from Gemini."""
    config = types.GenerateContentConfig(max_output_tokens=max_tokens, temperature=temperature, response_mime_type="application/json")
    try:
      # Use the async client to avoid blocking the asyncio event loop.
      response = await self._client.aio.models.generate_content(model=self.name, contents=prompt, config=config)
    except genai_errors.APIError as exc:
      raise _classify_api_error(exc) from exc
    except Exception as exc:
      raise classify_generation_error(exc) from exc

    if response.usage_metadata:
      self.last_usage = GenerationUsage(
        prompt_tokens=response.usage_metadata.prompt_token_count,
        completion_tokens=response.usage_metadata.candidates_token_count,
        total_tokens=response.usage_metadata.total_token_count,
      )

    text = response.text
    if not text:
      finish_reason = None
      if response.candidates:
        finish_reason = response.candidates[0].finish_reason
      if finish_reason in (types.FinishReason.SAFETY, types.FinishReason.PROHIBITED_CONTENT, types.FinishReason.BLOCKLIST):
        raise FatalGenerationError(f"Gemini blocked the response (finish_reason={finish_reason}).", code="content_blocked")
      raise TransientGenerationError(f"Gemini returned an empty response (finish_reason={finish_reason}).")

    logger.debug("Gemini response model=%s chars=%d", self.name, len(text))
    return text


def _classify_api_error(exc: genai_errors.APIError) -> TransientGenerationError | FatalGenerationError:
  status = getattr(exc, "code", None)
  message = f"Gemini API error status={status}: {exc.message or exc}"
  if isinstance(exc, genai_errors.ServerError) or status in _RETRYABLE_STATUS_CODES:
    return TransientGenerationError(message, context={"status": status})
  return FatalGenerationError(message, context={"status": status})
