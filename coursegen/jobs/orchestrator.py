"""Drive generation jobs through the stage pipeline."""

from __future__ import annotations

import asyncio
import logging
import math
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any

from coursegen.ai.stages import StageExecutor
from coursegen.core.errors import CourseGenError, GenerationError, NotFoundError, StorageError, ValidationError
from coursegen.jobs.models import DIFFICULTIES, GenerationParams, JobRecord, Stage, StageResultRecord, now_iso, stage_ordinal
from coursegen.jobs.progress import intra_stage_percent, stage_complete_percent, stage_start_percent
from coursegen.jobs.state_machine import (
  CANCELLED_MESSAGE,
  CancelObserved,
  CloseStream,
  Effect,
  EmitComplete,
  EmitError,
  EmitStageComplete,
  EmitStageStart,
  Event,
  JobState,
  PersistJob,
  RetryPolicy,
  RetryStarted,
  ScheduleRetry,
  StageFailed,
  StageStarted,
  StageSucceeded,
  Started,
  StorageFailed,
  transition,
)
from coursegen.progress.emitter import ProgressEmitter
from coursegen.progress.events import ProgressEvent
from coursegen.storage.content_repo import ContentRepository
from coursegen.storage.jobs_repo import JobsRepository
from coursegen.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "An unexpected error interrupted course generation."


@dataclass(frozen=True)
class RequestLimits:
  max_estimated_hours: float = 200.0
  max_learning_objectives: int = 20


def validate_generation_params(params: GenerationParams, limits: RequestLimits) -> GenerationParams:
  """Reject unusable requests before any job exists; returns the normalized parameters."""
  title = params.title.strip()
  description = params.description.strip()
  if not title:
    raise ValidationError("title must not be empty.", context={"field": "title"})
  if not description:
    raise ValidationError("description must not be empty.", context={"field": "description"})
  if params.difficulty not in DIFFICULTIES:
    raise ValidationError(f"difficulty must be one of {', '.join(DIFFICULTIES)}.", context={"field": "difficulty"})
  if not math.isfinite(params.estimated_hours) or params.estimated_hours <= 0 or params.estimated_hours > limits.max_estimated_hours:
    raise ValidationError(f"estimated_hours must be greater than 0 and at most {limits.max_estimated_hours:g}.", context={"field": "estimated_hours"})

  objectives = [item.strip() for item in params.learning_objectives if item and item.strip()]
  if len(objectives) > limits.max_learning_objectives:
    raise ValidationError(f"At most {limits.max_learning_objectives} learning objectives are allowed.", context={"field": "learning_objectives"})

  requirements = params.requirements.strip() if params.requirements else None
  return replace(params, title=title, description=description, learning_objectives=objectives, requirements=requirements or None)


@dataclass
class _Run:
  """Mutable view of one run_job invocation."""

  job: JobRecord
  state: JobState
  final_event: ProgressEvent | None = None


class GenerationOrchestrator:
  """Own the job lifecycle: start, run, retry, cancel and resume."""

  def __init__(
    self,
    *,
    jobs_repo: JobsRepository,
    content_repo: ContentRepository,
    executor: StageExecutor,
    emitter: ProgressEmitter,
    retry_policy: RetryPolicy | None = None,
    limits: RequestLimits | None = None,
    enqueue: Callable[[str], None] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
  ) -> None:
    self._jobs_repo = jobs_repo
    self._content_repo = content_repo
    self._executor = executor
    self._emitter = emitter
    self._retry_policy = retry_policy or RetryPolicy()
    self._limits = limits or RequestLimits()
    self._enqueue = enqueue
    self._sleep = sleep
    self._active_jobs: set[str] = set()

  def bind_enqueue(self, enqueue: Callable[[str], None]) -> None:
    """Attach the worker pool submit function once it exists."""
    self._enqueue = enqueue

  def _submit(self, job_id: str) -> None:
    if self._enqueue is None:
      raise RuntimeError("No worker pool is bound to the orchestrator.")
    self._enqueue(job_id)

  async def start_generation(self, params: GenerationParams) -> str:
    """Validate, create a pending job and hand it to the worker pool."""
    normalized = validate_generation_params(params, self._limits)
    timestamp = now_iso()
    job = JobRecord(job_id=generate_job_id(), params=normalized, status="pending", stage="outline", created_at=timestamp, updated_at=timestamp)
    await self._jobs_repo.create_job(job)
    logger.info("Generation job created job_id=%s difficulty=%s hours=%g", job.job_id, normalized.difficulty, normalized.estimated_hours)
    self._submit(job.job_id)
    return job.job_id

  async def get_job(self, job_id: str) -> JobRecord:
    job = await self._jobs_repo.get_job(job_id)
    if job is None:
      raise NotFoundError(f"Job {job_id} not found.")
    return job

  async def list_stage_results(self, job_id: str) -> list[StageResultRecord]:
    await self.get_job(job_id)
    return await self._jobs_repo.list_stage_results(job_id=job_id)

  async def cancel_job(self, job_id: str) -> JobRecord:
    """Request cooperative cancellation; pending jobs are cancelled on the spot."""
    job = await self.get_job(job_id)
    if job.is_terminal:
      return job

    if job.status == "pending" and job_id not in self._active_jobs:
      error = {"code": "job_cancelled", "message": CANCELLED_MESSAGE}
      updated = await self._jobs_repo.update_job(job_id, status="cancelled", cancel_requested=True, last_error=error, completed_at=now_iso())
      self._emitter.close(job_id, ProgressEvent(job_id=job_id, type="error", percent=stage_start_percent(job.stage), stage=job.stage, payload=error))
      logger.info("Pending job cancelled job_id=%s", job_id)
      return updated or job

    updated = await self._jobs_repo.update_job(job_id, cancel_requested=True)
    logger.info("Cancellation requested job_id=%s stage=%s", job_id, job.stage)
    return updated or job

  async def resume_job(self, job_id: str) -> JobRecord:
    """Re-enqueue a non-terminal job; it continues from its current stage."""
    job = await self.get_job(job_id)
    if job.is_terminal:
      raise ValidationError(f"Job {job_id} is {job.status} and cannot be resumed; start a new generation instead.", code="job_not_resumable")
    if job_id not in self._active_jobs:
      self._submit(job_id)
    return job

  async def resume_incomplete_jobs(self, limit: int = 50) -> int:
    """Re-enqueue jobs left non-terminal by a previous process."""
    jobs = await self._jobs_repo.find_resumable(limit=limit)
    for job in jobs:
      self._submit(job.job_id)
    if jobs:
      logger.info("Re-enqueued %d incomplete generation job(s).", len(jobs))
    return len(jobs)

  async def run_job(self, job_id: str) -> JobRecord | None:
    """Drive a job from its current stage to a terminal state.

    Safe to call again for a non-terminal job: stages with a succeeded result are skipped, so no
    generator call is repeated and no stage result is duplicated. Terminal jobs are left untouched.
    """
    if job_id in self._active_jobs:
      logger.info("Job already running in this process job_id=%s", job_id)
      return None

    job = await self._jobs_repo.get_job(job_id)
    if job is None:
      logger.warning("run_job for unknown job_id=%s", job_id)
      return None
    if job.is_terminal:
      logger.info("Job already terminal job_id=%s status=%s", job_id, job.status)
      return job

    self._active_jobs.add(job_id)
    run = _Run(job=job, state=JobState(status=job.status, stage=job.stage, attempt=job.attempt, last_error=job.last_error))
    try:
      await self._drive(run)
    except StorageError as exc:
      logger.error("Storage failure while running job_id=%s stage=%s code=%s", job_id, run.state.stage, exc.code, exc_info=True)
      await self._record_storage_failure(run, exc)
      raise
    finally:
      self._active_jobs.discard(job_id)

    if run.state.status in ("failed", "cancelled") and run.job.course_id:
      await self._content_repo.update_course(run.job.course_id, status="failed")
    logger.info("Job finished job_id=%s status=%s stage=%s", job_id, run.state.status, run.state.stage)
    return run.job

  async def _drive(self, run: _Run) -> None:
    await self._apply(run, Started())
    while not run.state.is_terminal:
      stage = run.state.stage
      if await self._cancel_requested(run):
        await self._apply(run, CancelObserved())
        break

      existing = await self._jobs_repo.get_stage_result(job_id=run.job.job_id, stage=stage)
      if existing is not None and existing.status == "succeeded":
        logger.info("Skipping stage with a durable result job_id=%s stage=%s", run.job.job_id, stage)
        await self._apply(run, StageSucceeded(stage, existing.parsed_payload))
        continue

      await self._apply(run, StageStarted(stage))
      failure = await self._execute_stage(run, stage)
      if failure is None:
        continue

      effects = await self._apply(run, failure)
      retry = next((effect for effect in effects if isinstance(effect, ScheduleRetry)), None)
      if retry is None:
        continue

      delay = self._jittered(retry.delay_seconds)
      logger.info("Retrying stage job_id=%s stage=%s retry=%d/%d in %.2fs", run.job.job_id, stage, retry.retry_number, self._retry_policy.max_retries, delay)
      await self._sleep(delay)
      if await self._cancel_requested(run):
        await self._apply(run, CancelObserved())
        break
      await self._apply(run, RetryStarted())

  async def _execute_stage(self, run: _Run, stage: Stage) -> StageFailed | None:
    """Run one stage; returns the failure event, or None once the success is persisted."""
    job_id = run.job.job_id

    def report(completed: int, total: int) -> None:
      payload = {"completed": completed, "total": total}
      self._emitter.publish(job_id, ProgressEvent(job_id=job_id, type="intra_stage_progress", percent=intra_stage_percent(stage, completed=completed, total=total), stage=stage, payload=payload))

    try:
      outcome = await self._executor.execute(run.job, stage, report=report)
    except GenerationError as exc:
      kind = "transient" if exc.retryable else "fatal"
      logger.warning("Stage failed job_id=%s stage=%s kind=%s code=%s: %s", job_id, stage, kind, exc.code, exc.message)
      await self._record_failed_result(run, stage, exc)
      return StageFailed(stage=stage, kind=kind, code=exc.code, message=exc.message)
    except StorageError:
      raise
    except Exception as exc:
      # Unknown failures are not retried; the job records an internal error code.
      logger.error("Unexpected stage error job_id=%s stage=%s", job_id, stage, exc_info=True)
      error = CourseGenError(INTERNAL_ERROR_MESSAGE, code="internal_error", context={"error_type": type(exc).__name__})
      await self._record_failed_result(run, stage, error)
      return StageFailed(stage=stage, kind="fatal", code=error.code, message=error.message)

    # Record the course on the job before the stage result becomes durable.
    if outcome.course_id and outcome.course_id != run.job.course_id:
      updated = await self._jobs_repo.update_job(job_id, course_id=outcome.course_id)
      run.job = updated or replace(run.job, course_id=outcome.course_id)
    await self._jobs_repo.upsert_stage_result(job_id=job_id, stage=stage, ordinal=stage_ordinal(stage), status="succeeded", raw_payload=outcome.raw_payload, parsed_payload=outcome.parsed_payload, error=None)
    await self._apply(run, StageSucceeded(stage, outcome.parsed_payload))
    return None

  async def _record_failed_result(self, run: _Run, stage: Stage, exc: CourseGenError) -> None:
    await self._jobs_repo.upsert_stage_result(job_id=run.job.job_id, stage=stage, ordinal=stage_ordinal(stage), status="failed", raw_payload=None, parsed_payload=None, error=exc.as_dict())

  async def _cancel_requested(self, run: _Run) -> bool:
    # Re-read so a cancel from another request or process is observed.
    latest = await self._jobs_repo.get_job(run.job.job_id)
    if latest is None:
      raise StorageError(f"Job {run.job.job_id} disappeared while running.")
    run.job = latest
    return latest.cancel_requested

  def _jittered(self, delay: float) -> float:
    return max(0.0, delay * random.uniform(0.75, 1.25))

  async def _record_storage_failure(self, run: _Run, exc: StorageError) -> None:
    if run.state.is_terminal:
      return
    try:
      await self._apply(run, StorageFailed(message=exc.message))
    except CourseGenError:
      # Best effort only: the store that just failed may still be down. The original error is re-raised by the caller.
      logger.error("Could not mark job failed after storage error job_id=%s", run.job.job_id, exc_info=True)

  async def _apply(self, run: _Run, event: Event) -> tuple[Effect, ...]:
    """Advance the state machine and carry out the resulting effects in order."""
    result = transition(run.state, event, self._retry_policy)
    run.state = result.state
    job_id = run.job.job_id
    for effect in result.effects:
      match effect:
        case PersistJob():
          await self._persist(run)
        case EmitStageStart(stage=stage):
          self._emitter.publish(job_id, ProgressEvent(job_id=job_id, type="stage_start", percent=stage_start_percent(stage), stage=stage))
        case EmitStageComplete(stage=stage, payload=payload):
          self._emitter.publish(job_id, ProgressEvent(job_id=job_id, type="stage_complete", percent=stage_complete_percent(stage), stage=stage, payload=payload))
        case EmitComplete():
          run.final_event = ProgressEvent(job_id=job_id, type="complete", percent=100.0, stage=run.state.stage, payload={"courseId": run.job.course_id})
        case EmitError(code=code, message=message, stage=stage):
          percent = stage_start_percent(stage) if stage else 0.0
          run.final_event = ProgressEvent(job_id=job_id, type="error", percent=percent, stage=stage, payload={"code": code, "message": message})
        case CloseStream():
          if run.final_event is not None:
            self._emitter.close(job_id, run.final_event)
        case ScheduleRetry():
          pass
    return result.effects

  async def _persist(self, run: _Run) -> None:
    state = run.state
    updated = await self._jobs_repo.update_job(
      run.job.job_id,
      status=state.status,
      stage=state.stage,
      attempt=state.attempt,
      last_error=state.last_error,
      clear_last_error=state.last_error is None,
      completed_at=now_iso() if state.is_terminal else None,
    )
    if updated is None:
      raise StorageError(f"Job {run.job.job_id} disappeared while running.")
    run.job = updated
