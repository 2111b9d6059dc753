import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from fastapi import APIRouter, Depends, status
from fastapi.responses import StreamingResponse

from coursegen.api.deps import get_runtime
from coursegen.api.models import GenerationJobRequest, JobCreateResponse, JobStatusResponse, StageResultResponse, StageResultsResponse
from coursegen.core.errors import StreamOverflowError
from coursegen.progress.events import ProgressEvent, sse_frame
from coursegen.services.generation import stream_job_events
from coursegen.services.runtime import Runtime

router = APIRouter()
logger = logging.getLogger("coursegen.api.routes.generation")


@router.post("", response_model=JobCreateResponse, response_model_by_alias=True, status_code=status.HTTP_202_ACCEPTED)
async def create_generation_job(request: GenerationJobRequest, runtime: Runtime = Depends(get_runtime)) -> JobCreateResponse:  # noqa: B008
  """Validate the request, persist a pending job and queue it for generation."""
  job_id = await runtime.orchestrator.start_generation(request.to_params())
  return JobCreateResponse(job_id=job_id)


@router.get("/{job_id}", response_model=JobStatusResponse, response_model_by_alias=True)
async def get_generation_job(job_id: str, runtime: Runtime = Depends(get_runtime)) -> JobStatusResponse:  # noqa: B008
  job = await runtime.orchestrator.get_job(job_id)
  return JobStatusResponse.from_record(job)


@router.get("/{job_id}/stages", response_model=StageResultsResponse, response_model_by_alias=True)
async def list_generation_stages(job_id: str, runtime: Runtime = Depends(get_runtime)) -> StageResultsResponse:  # noqa: B008
  """Return the durable per-stage results recorded so far."""
  results = await runtime.orchestrator.list_stage_results(job_id)
  return StageResultsResponse(job_id=job_id, stages=[StageResultResponse.from_record(result) for result in results])


@router.post("/{job_id}/cancel", response_model=JobStatusResponse, response_model_by_alias=True)
async def cancel_generation_job(job_id: str, runtime: Runtime = Depends(get_runtime)) -> JobStatusResponse:  # noqa: B008
  """Request cancellation; running jobs stop at the next stage boundary."""
  job = await runtime.orchestrator.cancel_job(job_id)
  return JobStatusResponse.from_record(job)


@router.post("/{job_id}/resume", response_model=JobStatusResponse, response_model_by_alias=True)
async def resume_generation_job(job_id: str, runtime: Runtime = Depends(get_runtime)) -> JobStatusResponse:  # noqa: B008
  """Re-queue a non-terminal job from its first unfinished stage."""
  job = await runtime.orchestrator.resume_job(job_id)
  return JobStatusResponse.from_record(job)


@router.get("/{job_id}/events")
async def stream_generation_events(job_id: str, runtime: Runtime = Depends(get_runtime)) -> StreamingResponse:  # noqa: B008
  """Stream progress events as Server-Sent Events until the job completes or fails."""
  # Resolve the job up front so unknown ids get a 404 instead of an empty stream.
  await runtime.orchestrator.get_job(job_id)

  async def event_generator() -> AsyncIterator[str]:
    percent = 0.0
    async with aclosing(stream_job_events(runtime.orchestrator, runtime.emitter, job_id)) as events:
      try:
        async for event in events:
          percent = event.percent
          yield sse_frame(event)
      except StreamOverflowError as exc:
        logger.warning("Progress subscriber dropped job_id=%s: %s", job_id, exc.message)
        yield sse_frame(ProgressEvent(job_id=job_id, type="error", percent=percent, payload=exc.as_dict()))

  return StreamingResponse(event_generator(), media_type="text/event-stream", headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"})
