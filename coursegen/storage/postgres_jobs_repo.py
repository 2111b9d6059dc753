"""Postgres-backed repository for generation jobs using SQLAlchemy."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursegen.core.database import get_session_factory, storage_session
from coursegen.jobs.models import GenerationParams, JobRecord, JobStatus, Stage, StageResultRecord, StageResultStatus, now_iso
from coursegen.schema.jobs import GenerationJob, StageResult
from coursegen.storage.jobs_repo import JobsRepository

_RESUMABLE_STATUSES = ("pending", "running", "stage_failed")


class PostgresJobsRepository(JobsRepository):
  """Persist jobs and stage results to Postgres using SQLAlchemy."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_job(self, record: JobRecord) -> None:
    async with storage_session(self._session_factory, operation="create_job") as session:
      job = GenerationJob(
        job_id=record.job_id,
        request_json=record.params.to_dict(),
        status=record.status,
        stage=record.stage,
        attempt=record.attempt,
        cancel_requested=record.cancel_requested,
        course_id=record.course_id,
        last_error=record.last_error,
        created_at=record.created_at,
        updated_at=record.updated_at,
        completed_at=record.completed_at,
      )
      session.add(job)
      await session.commit()

  async def get_job(self, job_id: str) -> JobRecord | None:
    async with storage_session(self._session_factory, operation="get_job") as session:
      row = await session.get(GenerationJob, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

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
    async with storage_session(self._session_factory, operation="update_job") as session:
      # Row lock keeps a concurrent cancel request from being overwritten by a stage update.
      stmt = select(GenerationJob).where(GenerationJob.job_id == job_id).with_for_update()
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      if status is not None:
        row.status = status
      if stage is not None:
        row.stage = stage
      if attempt is not None:
        row.attempt = attempt
      if cancel_requested is not None:
        row.cancel_requested = cancel_requested
      if course_id is not None:
        row.course_id = course_id
      if clear_last_error:
        row.last_error = None
      elif last_error is not None:
        row.last_error = last_error
      if completed_at is not None:
        row.completed_at = completed_at
      row.updated_at = now_iso()
      session.add(row)
      await session.commit()
      await session.refresh(row)
      return self._model_to_record(row)

  async def find_resumable(self, limit: int = 50) -> list[JobRecord]:
    async with storage_session(self._session_factory, operation="find_resumable") as session:
      stmt = select(GenerationJob).where(GenerationJob.status.in_(_RESUMABLE_STATUSES)).order_by(GenerationJob.created_at.asc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

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
    values = {"job_id": job_id, "stage": stage, "ordinal": ordinal, "status": status, "raw_payload": raw_payload, "parsed_payload": parsed_payload, "error": error, "created_at": now_iso()}
    stmt = insert(StageResult).values(**values)
    # A rerun overwrites the single (job, stage) row instead of appending a new one.
    stmt = stmt.on_conflict_do_update(
      constraint="ux_stage_results_job_stage",
      set_={"ordinal": ordinal, "status": status, "raw_payload": raw_payload, "parsed_payload": parsed_payload, "error": error, "created_at": values["created_at"]},
    ).returning(StageResult)
    async with storage_session(self._session_factory, operation="upsert_stage_result") as session:
      row = (await session.scalars(stmt)).one()
      await session.commit()
      return self._stage_result_to_record(row)

  async def get_stage_result(self, *, job_id: str, stage: Stage) -> StageResultRecord | None:
    async with storage_session(self._session_factory, operation="get_stage_result") as session:
      stmt = select(StageResult).where(StageResult.job_id == job_id, StageResult.stage == stage).limit(1)
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      return self._stage_result_to_record(row)

  async def list_stage_results(self, *, job_id: str) -> list[StageResultRecord]:
    async with storage_session(self._session_factory, operation="list_stage_results") as session:
      stmt = select(StageResult).where(StageResult.job_id == job_id).order_by(StageResult.ordinal.asc())
      rows = (await session.execute(stmt)).scalars().all()
      return [self._stage_result_to_record(row) for row in rows]

  def _stage_result_to_record(self, row: StageResult) -> StageResultRecord:
    return StageResultRecord(
      job_id=str(row.job_id),
      stage=row.stage,  # type: ignore[arg-type]
      ordinal=int(row.ordinal),
      status=row.status,  # type: ignore[arg-type]
      raw_payload=row.raw_payload,
      parsed_payload=row.parsed_payload,
      error=row.error,
      created_at=row.created_at,
    )

  def _model_to_record(self, row: GenerationJob) -> JobRecord:
    return JobRecord(
      job_id=row.job_id,
      params=GenerationParams.from_dict(row.request_json),
      status=row.status,  # type: ignore[arg-type]
      stage=row.stage,  # type: ignore[arg-type]
      created_at=row.created_at,
      updated_at=row.updated_at,
      attempt=int(row.attempt),
      cancel_requested=bool(row.cancel_requested),
      course_id=row.course_id,
      last_error=row.last_error,
      completed_at=row.completed_at,
    )
