"""Storage interfaces for generation jobs and their stage results."""

from __future__ import annotations

from typing import Any, Protocol

from coursegen.jobs.models import JobRecord, JobStatus, Stage, StageResultRecord, StageResultStatus


class JobsRepository(Protocol):
  """Repository contract for job persistence."""

  async def create_job(self, record: JobRecord) -> None:
    """Persist an initial job record."""

  async def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier."""

  async def update_job(
    self,
    job_id: str,
    *,
    status: JobStatus | None = None,
    stage: Stage | None = None,
    attempt: int | None = None,
    cancel_requested: bool | None = None,
    course_id: str | None = None,
    last_error: dict[str, Any] | None = None,
    clear_last_error: bool = False,
    completed_at: str | None = None,
  ) -> JobRecord | None:
    """Apply partial updates to a job."""

  async def find_resumable(self, limit: int = 50) -> list[JobRecord]:
    """Return non-terminal jobs, oldest first."""

  async def upsert_stage_result(
    self,
    *,
    job_id: str,
    stage: Stage,
    ordinal: int,
    status: StageResultStatus,
    raw_payload: str | None,
    parsed_payload: dict[str, Any] | None,
    error: dict[str, Any] | None,
  ) -> StageResultRecord:
    """Insert or overwrite the single result row for (job, stage)."""

  async def get_stage_result(self, *, job_id: str, stage: Stage) -> StageResultRecord | None:
    """Get the result row for one stage of a job."""

  async def list_stage_results(self, *, job_id: str) -> list[StageResultRecord]:
    """List a job's stage results ordered by ordinal."""
