from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from coursegen.jobs.models import Difficulty, GenerationParams, JobRecord, JobStatus, Stage, StageResultRecord, StageResultStatus


def _to_camel(string: str) -> str:
  head, *tail = string.split("_")
  return head + "".join(word.capitalize() for word in tail)


class _CamelModel(BaseModel):
  model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel)


class GenerationJobRequest(_CamelModel):
  """Request payload for starting a course generation job."""

  title: StrictStr = Field(min_length=1, max_length=200, examples=["Introduction to Python"])
  description: StrictStr = Field(min_length=1, max_length=2000)
  difficulty: Difficulty
  estimated_hours: float = Field(gt=0, description="Expected total learning time in hours.")
  learning_objectives: list[StrictStr] = Field(min_length=1)
  requirements: StrictStr | None = Field(default=None, max_length=2000, description="Optional free-text constraints for the generator.")
  model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel, extra="forbid")

  def to_params(self) -> GenerationParams:
    return GenerationParams(
      title=self.title,
      description=self.description,
      difficulty=self.difficulty,
      estimated_hours=self.estimated_hours,
      learning_objectives=list(self.learning_objectives),
      requirements=self.requirements,
    )


class JobCreateResponse(_CamelModel):
  job_id: StrictStr


class JobStatusResponse(_CamelModel):
  """Status payload for a generation job."""

  job_id: StrictStr
  status: JobStatus
  stage: Stage
  attempt: int
  cancel_requested: bool
  course_id: StrictStr | None = None
  last_error: dict[str, Any] | None = None
  created_at: StrictStr
  updated_at: StrictStr
  completed_at: StrictStr | None = None

  @classmethod
  def from_record(cls, job: JobRecord) -> JobStatusResponse:
    return cls(
      job_id=job.job_id,
      status=job.status,
      stage=job.stage,
      attempt=job.attempt,
      cancel_requested=job.cancel_requested,
      course_id=job.course_id,
      last_error=job.last_error,
      created_at=job.created_at,
      updated_at=job.updated_at,
      completed_at=job.completed_at,
    )


class StageResultResponse(_CamelModel):
  stage: Stage
  ordinal: int
  status: StageResultStatus
  parsed_payload: dict[str, Any] | None = None
  error: dict[str, Any] | None = None
  created_at: StrictStr

  @classmethod
  def from_record(cls, result: StageResultRecord) -> StageResultResponse:
    return cls(stage=result.stage, ordinal=result.ordinal, status=result.status, parsed_payload=result.parsed_payload, error=result.error, created_at=result.created_at)


class StageResultsResponse(_CamelModel):
  job_id: StrictStr
  stages: list[StageResultResponse]
