"""Stage executor: one generator round-trip (or one per item) per pipeline stage."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from coursegen.ai.errors import classify_generation_error
from coursegen.ai.json_parser import parse_json_with_fallback
from coursegen.ai.pipeline.contracts import LessonsPayload, ModulesPayload, OutlinePayload, SectionsPayload, ThumbnailPayload
from coursegen.ai.prompts import build_lessons_prompt, build_modules_prompt, build_outline_prompt, build_sections_prompt, build_thumbnail_prompt
from coursegen.ai.providers.base import ContentGenerator
from coursegen.core.errors import FatalGenerationError, GenerationError, TransientGenerationError
from coursegen.jobs.models import JobRecord, Stage
from coursegen.storage.content_repo import ContentRepository, CourseRecord, LessonRecord, ModuleRecord, SectionRecord
from coursegen.storage.jobs_repo import JobsRepository
from coursegen.utils.ids import generate_content_id

logger = logging.getLogger(__name__)

# Called with (completed, total) after each item of a list-processing stage.
ProgressReporter = Callable[[int, int], None]

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class StageOutcome:
  """What a successful stage produced."""

  raw_payload: str | None
  parsed_payload: dict[str, Any]
  course_id: str | None


@dataclass(frozen=True)
class GenerationOptions:
  max_tokens: int = 8192
  temperature: float = 0.4
  timeout_seconds: float = 60.0


def _noop_report(completed: int, total: int) -> None:
  _ = (completed, total)


class StageExecutor:
  """Build prompts, call the generator, validate output and persist content for one stage."""

  def __init__(self, *, generator: ContentGenerator, content_repo: ContentRepository, jobs_repo: JobsRepository, options: GenerationOptions | None = None) -> None:
    self._generator = generator
    self._content_repo = content_repo
    self._jobs_repo = jobs_repo
    self._options = options or GenerationOptions()

  async def execute(self, job: JobRecord, stage: Stage, *, report: ProgressReporter | None = None) -> StageOutcome:
    """Run one stage for a job.

    Raises TransientGenerationError for failures worth retrying, FatalGenerationError for failures that
    are not, and StorageError when persistence fails.
    """
    report = report or _noop_report
    if stage == "outline":
      return await self._run_outline(job)
    if stage == "modules":
      return await self._run_modules(job)
    if stage == "lessons":
      return await self._run_lessons(job, report)
    if stage == "sections":
      return await self._run_sections(job, report)
    if stage == "finalize":
      return await self._run_finalize(job)
    raise FatalGenerationError(f"Unknown stage '{stage}'.", code="unknown_stage")

  async def _generate(self, prompt: str, schema: type[T], *, label: str) -> tuple[str, T]:
    """Call the generator under the configured timeout and validate its JSON against `schema`."""
    try:
      async with asyncio.timeout(self._options.timeout_seconds):
        raw = await self._generator.generate(prompt, max_tokens=self._options.max_tokens, temperature=self._options.temperature)
    except TimeoutError as exc:
      raise TransientGenerationError(f"Generator call for {label} timed out after {self._options.timeout_seconds:g}s.", code="generation_timeout") from exc
    except GenerationError:
      raise
    except Exception as exc:
      raise classify_generation_error(exc) from exc

    return raw, _validate(raw, schema, label=label)

  async def _require_course(self, job: JobRecord) -> CourseRecord:
    course = await self._content_repo.get_course(job.course_id) if job.course_id else None
    if course is None:
      raise FatalGenerationError(f"Job {job.job_id} has no course; the outline stage must succeed first.", code="missing_prior_stage")
    return course

  async def _run_outline(self, job: JobRecord) -> StageOutcome:
    raw, outline = await self._generate(build_outline_prompt(job.params), OutlinePayload, label="outline")
    course = CourseRecord(
      course_id=job.course_id or generate_content_id(),
      job_id=job.job_id,
      title=outline.title,
      summary=outline.summary,
      difficulty=job.params.difficulty,
      estimated_hours=job.params.estimated_hours,
      status="generating",
      prerequisites=list(outline.prerequisites),
    )
    stored = await self._content_repo.upsert_course(course)
    logger.info("Outline stored job_id=%s course_id=%s modules=%d", job.job_id, stored.course_id, len(outline.modules))
    return StageOutcome(raw_payload=raw, parsed_payload=outline.model_dump(), course_id=stored.course_id)

  async def _run_modules(self, job: JobRecord) -> StageOutcome:
    course = await self._require_course(job)
    outline_result = await self._jobs_repo.get_stage_result(job_id=job.job_id, stage="outline")
    if outline_result is None or outline_result.status != "succeeded" or outline_result.parsed_payload is None:
      raise FatalGenerationError(f"Job {job.job_id} has no outline result.", code="missing_prior_stage")

    raw, payload = await self._generate(build_modules_prompt(job.params, outline_result.parsed_payload), ModulesPayload, label="modules")
    modules = [
      ModuleRecord(module_id=generate_content_id(), course_id=course.course_id, title=item.title, summary=item.summary, order_index=index, objectives=list(item.objectives))
      for index, item in enumerate(payload.modules)
    ]
    await self._content_repo.replace_modules(course.course_id, modules)
    parsed = {"modules": [{"module_id": module.module_id, "title": module.title, "objectives": module.objectives} for module in modules]}
    return StageOutcome(raw_payload=raw, parsed_payload=parsed, course_id=course.course_id)

  async def _run_lessons(self, job: JobRecord, report: ProgressReporter) -> StageOutcome:
    course = await self._require_course(job)
    modules = await self._content_repo.list_modules(course.course_id)
    if not modules:
      raise FatalGenerationError(f"Course {course.course_id} has no modules to plan lessons for.", code="missing_prior_stage")

    raws: list[str] = []
    lessons: list[LessonRecord] = []
    parsed_modules: list[dict[str, Any]] = []
    for position, module in enumerate(modules, start=1):
      raw, payload = await self._generate(build_lessons_prompt(job.params, course, module, len(modules)), LessonsPayload, label=f"lessons of module {position}")
      raws.append(raw)
      module_lessons = [
        LessonRecord(lesson_id=generate_content_id(), course_id=course.course_id, module_id=module.module_id, title=item.title, summary=item.summary, order_index=index, estimated_minutes=item.estimated_minutes)
        for index, item in enumerate(payload.lessons)
      ]
      lessons.extend(module_lessons)
      parsed_modules.append({"module_id": module.module_id, "lessons": [{"lesson_id": lesson.lesson_id, "title": lesson.title} for lesson in module_lessons]})
      report(position, len(modules))

    # Rows are written once all items succeed so a retried stage starts from a clean slate.
    await self._content_repo.replace_lessons(course.course_id, lessons)
    return StageOutcome(raw_payload=json.dumps(raws), parsed_payload={"modules": parsed_modules, "lesson_count": len(lessons)}, course_id=course.course_id)

  async def _run_sections(self, job: JobRecord, report: ProgressReporter) -> StageOutcome:
    course = await self._require_course(job)
    modules = {module.module_id: module for module in await self._content_repo.list_modules(course.course_id)}
    lessons = await self._content_repo.list_lessons(course.course_id)
    if not lessons:
      raise FatalGenerationError(f"Course {course.course_id} has no lessons to write sections for.", code="missing_prior_stage")

    raws: list[str] = []
    sections: list[SectionRecord] = []
    parsed_lessons: list[dict[str, Any]] = []
    for position, lesson in enumerate(lessons, start=1):
      module = modules[lesson.module_id]
      raw, payload = await self._generate(build_sections_prompt(job.params, course, module, lesson), SectionsPayload, label=f"sections of lesson {position}")
      raws.append(raw)
      lesson_sections = [
        SectionRecord(
          section_id=generate_content_id(),
          course_id=course.course_id,
          lesson_id=lesson.lesson_id,
          title=item.title,
          kind=item.kind,
          order_index=index,
          content={"body": item.body, "data": item.data},
        )
        for index, item in enumerate(payload.sections)
      ]
      sections.extend(lesson_sections)
      parsed_lessons.append({"lesson_id": lesson.lesson_id, "sections": [{"section_id": section.section_id, "title": section.title, "kind": section.kind} for section in lesson_sections]})
      report(position, len(lessons))

    await self._content_repo.replace_sections(course.course_id, sections)
    return StageOutcome(raw_payload=json.dumps(raws), parsed_payload={"lessons": parsed_lessons, "section_count": len(sections)}, course_id=course.course_id)

  async def _run_finalize(self, job: JobRecord) -> StageOutcome:
    course = await self._require_course(job)
    modules = await self._content_repo.list_modules(course.course_id)
    lessons = await self._content_repo.list_lessons(course.course_id)
    sections = await self._content_repo.list_sections(course.course_id)

    raw: str | None = None
    thumbnail_prompt: str | None = None
    try:
      raw, thumbnail = await self._generate(build_thumbnail_prompt(course, modules, lessons, sections), ThumbnailPayload, label="thumbnail")
      thumbnail_prompt = thumbnail.prompt
    except GenerationError as exc:
      # The thumbnail is an enrichment; the course is complete without it.
      logger.warning("Thumbnail generation failed job_id=%s course_id=%s code=%s: %s", job.job_id, course.course_id, exc.code, exc.message)

    await self._content_repo.update_course(course.course_id, status="ready", thumbnail_prompt=thumbnail_prompt, total_modules=len(modules), total_lessons=len(lessons), total_sections=len(sections))
    parsed = {"course_id": course.course_id, "total_modules": len(modules), "total_lessons": len(lessons), "total_sections": len(sections), "thumbnail_prompt": thumbnail_prompt}
    return StageOutcome(raw_payload=raw, parsed_payload=parsed, course_id=course.course_id)


def _validate(raw: str, schema: type[T], *, label: str) -> T:
  """Parse generator text leniently and validate it against the stage schema."""
  try:
    data = parse_json_with_fallback(raw)
  except json.JSONDecodeError as exc:
    raise FatalGenerationError(f"Generator output for {label} is not valid JSON: {exc.msg}", code="schema_violation") from exc

  if not isinstance(data, dict):
    raise FatalGenerationError(f"Generator output for {label} must be a JSON object, got {type(data).__name__}.", code="schema_violation")

  try:
    return schema.model_validate(data)
  except PydanticValidationError as exc:
    raise FatalGenerationError(f"Generator output for {label} does not match the expected shape: {exc.error_count()} error(s).", code="schema_violation", context={"errors": exc.errors(include_url=False, include_input=False)}) from exc
