"""Generation use cases shared by the HTTP layer."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from coursegen.jobs.models import JobRecord
from coursegen.jobs.orchestrator import GenerationOrchestrator
from coursegen.jobs.progress import stage_start_percent
from coursegen.progress.emitter import ProgressEmitter
from coursegen.progress.events import ProgressEvent

logger = logging.getLogger(__name__)


def final_event_for(job: JobRecord) -> ProgressEvent:
  """Rebuild the closing event of a terminal job from its persisted state."""
  if job.status == "completed":
    return ProgressEvent(job_id=job.job_id, type="complete", percent=100.0, stage=job.stage, payload={"courseId": job.course_id})
  error = job.last_error or {"code": job.status, "message": f"Job {job.status}."}
  return ProgressEvent(job_id=job.job_id, type="error", percent=stage_start_percent(job.stage), stage=job.stage, payload=error)


async def stream_job_events(orchestrator: GenerationOrchestrator, emitter: ProgressEmitter, job_id: str) -> AsyncIterator[ProgressEvent]:
  """Yield a job's progress events until its terminal event.

  The subscription is registered before the job is read so nothing published in between is lost. A
  job that is already terminal yields one synthesized final event. Raises StreamOverflowError if the
  consumer falls behind.
  """
  subscription = emitter.subscribe(job_id)
  try:
    job = await orchestrator.get_job(job_id)
    if job.is_terminal:
      yield final_event_for(job)
      return

    async for event in subscription:
      yield event
      if event.is_terminal:
        return
  finally:
    subscription.close()
    logger.debug("Progress stream closed job_id=%s", job_id)
