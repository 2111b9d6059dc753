"""Lenient parsing and failure classification of generator output."""

from __future__ import annotations

import asyncio
import json

import pytest

from coursegen.ai.errors import classify_generation_error, is_transient_error
from coursegen.ai.json_parser import parse_json_with_fallback
from coursegen.ai.stages import GenerationOptions, StageExecutor
from coursegen.core.errors import FatalGenerationError, TransientGenerationError
from coursegen.jobs.models import GenerationParams, JobRecord, now_iso
from tests.fakes import ScriptedGenerator


@pytest.mark.parametrize(
  "raw",
  [
    '{"a": 1}',
    '```json\n{"a": 1}\n```',
    'Here you go: {"a": 1} Hope that helps!',
    '{"a": 1,}',
  ],
)
def test_parse_json_with_fallback_recovers(raw: str) -> None:
  assert parse_json_with_fallback(raw) == {"a": 1}


def test_parse_json_keeps_braces_inside_strings() -> None:
  assert parse_json_with_fallback('prefix {"text": "a } b", "n": [1, 2]} suffix') == {"text": "a } b", "n": [1, 2]}


def test_parse_json_without_any_object_raises() -> None:
  with pytest.raises(json.JSONDecodeError):
    parse_json_with_fallback("I could not produce a course.")


@pytest.mark.parametrize(
  ("error", "expected", "code"),
  [
    (TimeoutError(), TransientGenerationError, "upstream_unavailable"),
    (RuntimeError("429 Resource exhausted"), TransientGenerationError, "upstream_unavailable"),
    (RuntimeError("503 Service Unavailable"), TransientGenerationError, "upstream_unavailable"),
    (RuntimeError("Invalid API key provided"), FatalGenerationError, "generation_rejected"),
    (ValueError("failed to parse JSON"), FatalGenerationError, "schema_violation"),
    (RuntimeError("something odd"), FatalGenerationError, "generation_rejected"),
  ],
)
def test_classify_generation_error(error: BaseException, expected: type, code: str) -> None:
  classified = classify_generation_error(error)
  assert type(classified) is expected
  assert classified.code == code


def test_fatal_hints_win_over_status_codes() -> None:
  assert not is_transient_error(RuntimeError("403 forbidden (500 upstream)"))


class _SlowGenerator(ScriptedGenerator):
  async def generate(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
    await asyncio.sleep(1)
    return "{}"


@pytest.mark.anyio
async def test_generator_timeout_is_transient(jobs_repo, content_repo) -> None:  # noqa: ANN001
  executor = StageExecutor(generator=_SlowGenerator(), content_repo=content_repo, jobs_repo=jobs_repo, options=GenerationOptions(timeout_seconds=0.01))
  params = GenerationParams(title="T", description="D", difficulty="beginner", estimated_hours=1)
  job = JobRecord(job_id="job-1", params=params, status="running", stage="outline", created_at=now_iso(), updated_at=now_iso())

  with pytest.raises(TransientGenerationError) as exc_info:
    await executor.execute(job, "outline")
  assert exc_info.value.code == "generation_timeout"


@pytest.mark.anyio
async def test_later_stage_without_course_is_fatal(jobs_repo, content_repo) -> None:  # noqa: ANN001
  executor = StageExecutor(generator=ScriptedGenerator(), content_repo=content_repo, jobs_repo=jobs_repo)
  params = GenerationParams(title="T", description="D", difficulty="beginner", estimated_hours=1)
  job = JobRecord(job_id="job-1", params=params, status="running", stage="lessons", created_at=now_iso(), updated_at=now_iso())

  with pytest.raises(FatalGenerationError) as exc_info:
    await executor.execute(job, "lessons")
  assert exc_info.value.code == "missing_prior_stage"
