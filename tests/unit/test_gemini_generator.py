from __future__ import annotations

from types import SimpleNamespace

import pytest
from google.genai import errors as genai_errors
from google.genai import types

from coursegen.ai.providers.gemini import GeminiContentGenerator
from coursegen.core.errors import FatalGenerationError, TransientGenerationError


def _generator_returning(result: object) -> GeminiContentGenerator:
  generator = GeminiContentGenerator("gemini-2.5-flash", "test-key")

  async def _generate_content(**kwargs: object) -> object:
    if isinstance(result, BaseException):
      raise result
    return result

  generator._client = SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=_generate_content)))
  return generator


def test_unknown_model_is_rejected() -> None:
  with pytest.raises(ValueError):
    GeminiContentGenerator("gpt-4", "test-key")


def test_missing_api_key_is_rejected() -> None:
  with pytest.raises(ValueError):
    GeminiContentGenerator("gemini-2.5-flash", None)


@pytest.mark.anyio
async def test_text_and_usage_are_returned() -> None:
  usage = SimpleNamespace(prompt_token_count=10, candidates_token_count=5, total_token_count=15)
  generator = _generator_returning(SimpleNamespace(text='{"ok": true}', usage_metadata=usage, candidates=[]))

  assert await generator.generate("prompt", max_tokens=100, temperature=0.2) == '{"ok": true}'
  assert generator.last_usage.total_tokens == 15


@pytest.mark.anyio
@pytest.mark.parametrize(
  ("error", "expected"),
  [
    (genai_errors.ClientError(429, {"error": {"message": "quota exceeded", "status": "RESOURCE_EXHAUSTED"}}), TransientGenerationError),
    (genai_errors.ServerError(503, {"error": {"message": "overloaded", "status": "UNAVAILABLE"}}), TransientGenerationError),
    (genai_errors.ClientError(400, {"error": {"message": "bad request", "status": "INVALID_ARGUMENT"}}), FatalGenerationError),
    (ConnectionError("reset"), TransientGenerationError),
  ],
)
async def test_api_errors_are_classified(error: BaseException, expected: type) -> None:
  generator = _generator_returning(error)

  with pytest.raises(expected):
    await generator.generate("prompt", max_tokens=100, temperature=0.2)


@pytest.mark.anyio
async def test_blocked_empty_response_is_fatal() -> None:
  candidate = SimpleNamespace(finish_reason=types.FinishReason.SAFETY)
  generator = _generator_returning(SimpleNamespace(text=None, usage_metadata=None, candidates=[candidate]))

  with pytest.raises(FatalGenerationError) as exc_info:
    await generator.generate("prompt", max_tokens=100, temperature=0.2)
  assert exc_info.value.code == "content_blocked"


@pytest.mark.anyio
async def test_empty_response_is_transient() -> None:
  generator = _generator_returning(SimpleNamespace(text="", usage_metadata=None, candidates=[]))

  with pytest.raises(TransientGenerationError):
    await generator.generate("prompt", max_tokens=100, temperature=0.2)
