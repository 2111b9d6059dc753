"""Domain error hierarchy shared by the pipeline, the progress engine and the HTTP layer."""

from __future__ import annotations

from typing import Any


class CourseGenError(Exception):
  """Base exception for domain errors carrying a machine-readable code."""

  status_code = 500
  default_code = "internal_error"

  def __init__(self, message: str, *, code: str | None = None, context: dict[str, Any] | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.code = code or self.default_code
    self.context = context or {}

  def as_dict(self) -> dict[str, Any]:
    """Serialize the error for job records and stream events."""
    return {"code": self.code, "message": self.message}


class ValidationError(CourseGenError):
  """Rejected input; nothing was created or changed."""

  status_code = 422
  default_code = "validation_error"


class NotFoundError(CourseGenError):
  """Referenced job, course or content entity does not exist."""

  status_code = 404
  default_code = "not_found"


class GenerationError(CourseGenError):
  """Failure while producing content for a pipeline stage."""

  retryable = False
  default_code = "generation_failed"


class TransientGenerationError(GenerationError):
  """Rate limits, timeouts and other upstream failures that may succeed on retry."""

  retryable = True
  default_code = "upstream_unavailable"


class FatalGenerationError(GenerationError):
  """Schema violations and permanent upstream rejections; retrying cannot help."""

  default_code = "generation_rejected"


class ConcurrencyConflict(CourseGenError):
  """A progress transaction lost a race with a concurrent writer."""

  status_code = 409
  default_code = "concurrency_conflict"


class StorageError(CourseGenError):
  """The backing store failed; the operation did not complete."""

  status_code = 503
  default_code = "storage_error"


class StreamOverflowError(CourseGenError):
  """A progress subscriber fell behind and was disconnected."""

  default_code = "stream_overflow"
