"""Scenario tests for the generation job lifecycle against in-memory stores."""

from __future__ import annotations

from dataclasses import replace

import pytest

from coursegen.core.errors import FatalGenerationError, NotFoundError, StorageError, TransientGenerationError, ValidationError
from coursegen.jobs.models import STAGE_ORDER, GenerationParams
from coursegen.jobs.orchestrator import RequestLimits, validate_generation_params

PARAMS = GenerationParams(title="Python Basics", description="Learn Python from scratch.", difficulty="beginner", estimated_hours=6, learning_objectives=["Write scripts"])


async def _collect(subscription) -> list:  # noqa: ANN001
  return [event async for event in subscription]


@pytest.mark.anyio
async def test_successful_job_runs_every_stage_in_order(orchestrator, jobs_repo, content_repo, emitter, generator, queued) -> None:  # noqa: ANN001
  job_id = await orchestrator.start_generation(PARAMS)
  assert queued == [job_id]
  assert (await jobs_repo.get_job(job_id)).status == "pending"

  subscription = emitter.subscribe(job_id)
  job = await orchestrator.run_job(job_id)
  events = await _collect(subscription)

  assert job.status == "completed"
  assert job.completed_at is not None
  assert [result.stage for result in await jobs_repo.list_stage_results(job_id=job_id)] == list(STAGE_ORDER)
  course = await content_repo.get_course(job.course_id)
  assert course.status == "ready"
  assert (course.total_modules, course.total_lessons, course.total_sections) == (2, 4, 8)
  assert course.thumbnail_prompt == "A friendly snake reading a book."
  assert generator.calls == {"outline": 1, "modules": 1, "lessons": 2, "sections": 4, "thumbnail": 1}

  starts = [event.stage for event in events if event.type == "stage_start"]
  completes = [event.stage for event in events if event.type == "stage_complete"]
  assert starts == list(STAGE_ORDER)
  assert completes == list(STAGE_ORDER)
  percents = [event.percent for event in events]
  assert percents == sorted(percents)
  assert events[-1].type == "complete"
  assert events[-1].payload == {"courseId": job.course_id}


@pytest.mark.anyio
async def test_intra_stage_progress_reports_each_item(orchestrator, emitter) -> None:  # noqa: ANN001
  job_id = await orchestrator.start_generation(PARAMS)
  subscription = emitter.subscribe(job_id)
  await orchestrator.run_job(job_id)
  events = await _collect(subscription)

  lesson_progress = [event.payload for event in events if event.type == "intra_stage_progress" and event.stage == "lessons"]
  assert lesson_progress == [{"completed": 1, "total": 2}, {"completed": 2, "total": 2}]


@pytest.mark.anyio
async def test_transient_failures_retry_with_backoff(orchestrator, generator, jobs_repo, sleeps) -> None:  # noqa: ANN001
  generator.fail("modules", TransientGenerationError("busy", code="rate_limited"), TransientGenerationError("busy", code="rate_limited"))
  job_id = await orchestrator.start_generation(PARAMS)

  job = await orchestrator.run_job(job_id)

  assert job.status == "completed"
  assert generator.calls["modules"] == 3
  assert len(sleeps) == 2
  assert 1.5 <= sleeps[0] <= 2.5
  assert 3.0 <= sleeps[1] <= 5.0
  assert job.last_error is None


@pytest.mark.anyio
async def test_exhausted_retries_fail_the_job(orchestrator, generator, jobs_repo, content_repo, emitter) -> None:  # noqa: ANN001
  generator.fail("lessons", *[TransientGenerationError("timeout", code="generation_timeout") for _ in range(4)])
  job_id = await orchestrator.start_generation(PARAMS)
  subscription = emitter.subscribe(job_id)

  job = await orchestrator.run_job(job_id)
  events = await _collect(subscription)

  assert job.status == "failed"
  assert job.stage == "lessons"
  assert job.last_error == {"code": "generation_timeout", "message": "timeout"}
  assert generator.calls["lessons"] == 4
  assert events[-1].type == "error"
  assert events[-1].payload["code"] == "generation_timeout"
  assert (await content_repo.get_course(job.course_id)).status == "failed"
  assert (await jobs_repo.get_stage_result(job_id=job_id, stage="lessons")).status == "failed"


@pytest.mark.anyio
async def test_fatal_failure_stops_without_retry(orchestrator, generator, sleeps) -> None:  # noqa: ANN001
  generator.fail("outline", FatalGenerationError("blocked", code="content_blocked"))
  job_id = await orchestrator.start_generation(PARAMS)

  job = await orchestrator.run_job(job_id)

  assert job.status == "failed"
  assert job.last_error["code"] == "content_blocked"
  assert generator.calls["outline"] == 1
  assert sleeps == []


@pytest.mark.anyio
async def test_schema_violation_is_fatal(orchestrator, generator) -> None:  # noqa: ANN001
  generator.responses["outline"] = {"title": "No modules"}
  job_id = await orchestrator.start_generation(PARAMS)

  job = await orchestrator.run_job(job_id)

  assert job.status == "failed"
  assert job.last_error["code"] == "schema_violation"
  assert generator.calls["outline"] == 1


@pytest.mark.anyio
async def test_unexpected_stage_error_fails_with_internal_error(orchestrator, content_repo, sleeps) -> None:  # noqa: ANN001
  async def _broken_upsert(record):  # noqa: ANN001, ANN202
    raise KeyError("boom")

  content_repo.upsert_course = _broken_upsert
  job_id = await orchestrator.start_generation(PARAMS)

  job = await orchestrator.run_job(job_id)

  assert job.status == "failed"
  assert job.last_error["code"] == "internal_error"
  assert sleeps == []


@pytest.mark.anyio
async def test_thumbnail_failure_does_not_fail_the_course(orchestrator, generator, content_repo) -> None:  # noqa: ANN001
  generator.fail("thumbnail", FatalGenerationError("blocked", code="content_blocked"))
  job_id = await orchestrator.start_generation(PARAMS)

  job = await orchestrator.run_job(job_id)

  assert job.status == "completed"
  course = await content_repo.get_course(job.course_id)
  assert course.status == "ready"
  assert course.thumbnail_prompt is None


@pytest.mark.anyio
async def test_resume_skips_stages_with_durable_results(orchestrator, generator, jobs_repo) -> None:  # noqa: ANN001
  generator.fail("lessons", FatalGenerationError("crash", code="schema_violation"))
  job_id = await orchestrator.start_generation(PARAMS)
  await orchestrator.run_job(job_id)
  # Simulate a process that died mid-run and left the job resumable from the first stage.
  await jobs_repo.update_job(job_id, status="stage_failed", stage="outline", clear_last_error=True)

  job = await orchestrator.run_job(job_id)

  assert job.status == "completed"
  assert generator.calls["outline"] == 1
  assert generator.calls["modules"] == 1
  assert generator.calls["lessons"] == 3
  assert len(await jobs_repo.list_stage_results(job_id=job_id)) == len(STAGE_ORDER)


class _ProcessDied(Exception):
  pass


OUTLINE_WRITES = {
  "update_job": lambda kwargs: kwargs.get("course_id") is not None,
  "upsert_stage_result": lambda kwargs: kwargs.get("stage") == "outline" and kwargs.get("status") == "succeeded",
}


@pytest.mark.anyio
@pytest.mark.parametrize("method", sorted(OUTLINE_WRITES))
async def test_crash_while_recording_outline_resumes_to_completion(orchestrator, generator, jobs_repo, content_repo, monkeypatch, method: str) -> None:  # noqa: ANN001
  original = getattr(jobs_repo, method)
  crashed: list[str] = []

  async def crash_once(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
    if not crashed and OUTLINE_WRITES[method](kwargs):
      crashed.append(method)
      raise _ProcessDied(method)
    return await original(*args, **kwargs)

  monkeypatch.setattr(jobs_repo, method, crash_once)
  job_id = await orchestrator.start_generation(PARAMS)
  with pytest.raises(_ProcessDied):
    await orchestrator.run_job(job_id)
  assert (await jobs_repo.get_job(job_id)).status == "running"

  job = await orchestrator.run_job(job_id)

  assert job.status == "completed"
  assert generator.calls["outline"] == 2
  assert list(content_repo.courses) == [job.course_id]
  assert (await content_repo.get_course(job.course_id)).status == "ready"
  assert len(await jobs_repo.list_stage_results(job_id=job_id)) == len(STAGE_ORDER)


@pytest.mark.anyio
async def test_run_job_is_idempotent_for_terminal_jobs(orchestrator, generator) -> None:  # noqa: ANN001
  job_id = await orchestrator.start_generation(PARAMS)
  first = await orchestrator.run_job(job_id)
  calls = dict(generator.calls)

  second = await orchestrator.run_job(job_id)

  assert second.status == first.status == "completed"
  assert dict(generator.calls) == calls


@pytest.mark.anyio
async def test_cancel_pending_job_is_immediate(orchestrator, emitter, generator) -> None:  # noqa: ANN001
  job_id = await orchestrator.start_generation(PARAMS)
  subscription = emitter.subscribe(job_id)

  job = await orchestrator.cancel_job(job_id)
  events = await _collect(subscription)

  assert job.status == "cancelled"
  assert events[-1].type == "error"
  assert events[-1].payload["code"] == "job_cancelled"
  assert (await orchestrator.run_job(job_id)).status == "cancelled"
  assert generator.calls == {}


@pytest.mark.anyio
async def test_cancel_requested_stops_at_next_stage_boundary(orchestrator, jobs_repo, generator) -> None:  # noqa: ANN001
  job_id = await orchestrator.start_generation(PARAMS)
  original_update = jobs_repo.upsert_stage_result

  async def _cancel_after_outline(**kwargs):  # noqa: ANN003, ANN202
    record = await original_update(**kwargs)
    if kwargs["stage"] == "outline":
      await jobs_repo.update_job(job_id, cancel_requested=True)
    return record

  jobs_repo.upsert_stage_result = _cancel_after_outline
  job = await orchestrator.run_job(job_id)

  assert job.status == "cancelled"
  assert job.stage == "modules"
  assert generator.calls.get("modules", 0) == 0


@pytest.mark.anyio
async def test_resume_rejects_terminal_jobs(orchestrator) -> None:  # noqa: ANN001
  job_id = await orchestrator.start_generation(PARAMS)
  await orchestrator.run_job(job_id)

  with pytest.raises(ValidationError) as exc_info:
    await orchestrator.resume_job(job_id)
  assert exc_info.value.code == "job_not_resumable"


@pytest.mark.anyio
async def test_resume_incomplete_jobs_requeues_non_terminal(orchestrator, queued) -> None:  # noqa: ANN001
  first = await orchestrator.start_generation(PARAMS)
  second = await orchestrator.start_generation(PARAMS)
  await orchestrator.run_job(second)
  queued.clear()

  count = await orchestrator.resume_incomplete_jobs()

  assert count == 1
  assert queued == [first]


@pytest.mark.anyio
async def test_storage_failure_marks_job_failed_best_effort(orchestrator, jobs_repo, generator) -> None:  # noqa: ANN001
  job_id = await orchestrator.start_generation(PARAMS)
  original_upsert = jobs_repo.upsert_stage_result

  async def _broken_upsert(**kwargs):  # noqa: ANN003, ANN202
    if kwargs["stage"] == "modules":
      raise StorageError("disk full")
    return await original_upsert(**kwargs)

  jobs_repo.upsert_stage_result = _broken_upsert

  with pytest.raises(StorageError):
    await orchestrator.run_job(job_id)

  job = await jobs_repo.get_job(job_id)
  assert job.status == "failed"
  assert job.last_error["code"] == "storage_error"


@pytest.mark.anyio
async def test_unknown_job_lookups_raise_not_found(orchestrator) -> None:  # noqa: ANN001
  with pytest.raises(NotFoundError):
    await orchestrator.get_job("missing")
  with pytest.raises(NotFoundError):
    await orchestrator.cancel_job("missing")
  assert await orchestrator.run_job("missing") is None


@pytest.mark.parametrize(
  ("changes", "field"),
  [
    ({"title": "   "}, "title"),
    ({"description": ""}, "description"),
    ({"difficulty": "expert"}, "difficulty"),
    ({"estimated_hours": 0}, "estimated_hours"),
    ({"estimated_hours": 500}, "estimated_hours"),
    ({"estimated_hours": float("nan")}, "estimated_hours"),
    ({"learning_objectives": [f"goal {n}" for n in range(21)]}, "learning_objectives"),
  ],
)
def test_invalid_requests_are_rejected(changes: dict, field: str) -> None:
  with pytest.raises(ValidationError) as exc_info:
    validate_generation_params(replace(PARAMS, **changes), RequestLimits())
  assert exc_info.value.context["field"] == field


def test_valid_request_is_normalized() -> None:
  params = replace(PARAMS, title="  Python  ", learning_objectives=[" a ", "", "b"], requirements="   ")
  normalized = validate_generation_params(params, RequestLimits())
  assert normalized.title == "Python"
  assert normalized.learning_objectives == ["a", "b"]
  assert normalized.requirements is None


@pytest.mark.anyio
async def test_invalid_request_creates_no_job(orchestrator, jobs_repo, queued) -> None:  # noqa: ANN001
  with pytest.raises(ValidationError):
    await orchestrator.start_generation(replace(PARAMS, estimated_hours=-1))
  assert jobs_repo.jobs == {}
  assert queued == []


@pytest.mark.anyio
async def test_module_retries_leave_no_duplicate_rows(orchestrator, generator, content_repo) -> None:  # noqa: ANN001
  generator.fail("modules", TransientGenerationError("busy"), TransientGenerationError("busy"))
  job_id = await orchestrator.start_generation(PARAMS)

  job = await orchestrator.run_job(job_id)

  assert job.status == "completed"
  modules = await content_repo.list_modules(job.course_id)
  assert [module.order_index for module in modules] == [0, 1]
  assert len(content_repo.modules) == 2


@pytest.mark.anyio
async def test_invalid_sections_payload_keeps_earlier_results(orchestrator, generator, jobs_repo) -> None:  # noqa: ANN001
  generator.responses["sections"] = {"sections": [{"title": "Bad", "kind": "video", "body": "x"}]}
  job_id = await orchestrator.start_generation(PARAMS)

  job = await orchestrator.run_job(job_id)

  assert job.status == "failed"
  assert job.last_error["code"] == "schema_violation"
  results = {result.stage: result.status for result in await orchestrator.list_stage_results(job_id)}
  assert results == {"outline": "succeeded", "modules": "succeeded", "lessons": "succeeded", "sections": "failed"}
