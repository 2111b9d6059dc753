"""Classify generator failures into retryable and permanent errors."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from coursegen.core.errors import FatalGenerationError, GenerationError, TransientGenerationError

_TRANSIENT_HINTS: tuple[str, ...] = (
  "rate limit",
  "resource exhausted",
  "resource_exhausted",
  "quota",
  "429",
  "timeout",
  "timed out",
  "deadline",
  "connection",
  "network",
  "temporarily",
  "service unavailable",
  "unavailable",
  "bad gateway",
  "gateway",
  "overloaded",
  "internal error",
  "500",
  "502",
  "503",
  "504",
)

_FATAL_HINTS: tuple[str, ...] = (
  "api key",
  "unauthorized",
  "permission denied",
  "forbidden",
  "model not found",
  "unsupported model",
  "invalid argument",
  "safety",
  "blocked",
)

_OUTPUT_HINTS: tuple[str, ...] = (
  "invalid json",
  "failed to parse",
  "parse json",
  "schema",
  "validation",
)


def _match_hint(message: str, hints: Iterable[str]) -> bool:
  """Return True when any hint appears in the message."""
  return any(hint in message for hint in hints)


def is_output_error(exc: BaseException) -> bool:
  """Return True when an exception indicates malformed generator output."""
  return _match_hint(str(exc).lower(), _OUTPUT_HINTS)


def is_transient_error(exc: BaseException) -> bool:
  """Return True when retrying the same prompt may succeed."""
  if isinstance(exc, TimeoutError | asyncio.TimeoutError | ConnectionError):
    return True
  message = str(exc).lower()
  # Permanent rejections win over generic hints like "error 500" inside the same text.
  if _match_hint(message, _FATAL_HINTS):
    return False
  return _match_hint(message, _TRANSIENT_HINTS)


def classify_generation_error(exc: BaseException) -> GenerationError:
  """Wrap an arbitrary generator failure in the matching domain error."""
  if isinstance(exc, GenerationError):
    return exc
  detail = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
  if is_output_error(exc):
    return FatalGenerationError(f"Generator output was unusable: {detail}", code="schema_violation")
  if is_transient_error(exc):
    return TransientGenerationError(f"Generator temporarily unavailable: {detail}")
  return FatalGenerationError(f"Generator rejected the request: {detail}")
