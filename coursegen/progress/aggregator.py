"""Roll section completions up into lesson and course progress atomically."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from coursegen.core.errors import NotFoundError, ValidationError
from coursegen.storage.content_repo import ContentRepository
from coursegen.storage.progress_repo import CourseProgressRecord, LessonProgressRecord, ProgressRepository, ProgressTransaction, SectionProgressRecord
from coursegen.utils.db_retry import execute_with_retry

logger = logging.getLogger(__name__)

LESSON_COMPLETED = "lesson_completed"
COURSE_COMPLETED = "course_completed"


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def lesson_percent(completed: int, total: int) -> int:
  """round_half_up(100 * completed / total) in integer arithmetic; 0 when there are no sections."""
  if total <= 0:
    return 0
  return (200 * completed + total) // (2 * total)


def course_percent(lesson_percents: list[int]) -> int:
  """Half-up rounded mean of lesson percents; 0 when there are no lessons."""
  count = len(lesson_percents)
  if count == 0:
    return 0
  return (2 * sum(lesson_percents) + count) // (2 * count)


@dataclass(frozen=True)
class ProgressUpdate:
  learner_id: str
  lesson_id: str
  course_id: str
  lesson_percent: int
  course_percent: int
  lesson_completed: bool
  course_completed: bool
  newly_crossed_thresholds: tuple[str, ...]
  occurred_at: datetime.datetime


@dataclass(frozen=True)
class CourseProgressSnapshot:
  learner_id: str
  course_id: str
  percent: int
  completed: bool
  time_spent_seconds: int
  lessons: list[LessonProgressRecord] = field(default_factory=list)


class ProgressAggregator:
  """Record section completions and recompute derived lesson/course progress."""

  def __init__(self, *, progress_repo: ProgressRepository, content_repo: ContentRepository, max_attempts: int = 5, clock: Callable[[], datetime.datetime] = _utcnow) -> None:
    self._progress_repo = progress_repo
    self._content_repo = content_repo
    self._max_attempts = max_attempts
    self._clock = clock

  async def record_section_completion(self, learner_id: str, lesson_id: str, section_id: str, time_spent_seconds: int) -> ProgressUpdate:
    """Mark a section complete for a learner and roll the change up to its lesson and course.

    All writes happen in one transaction that re-reads sibling rows, so concurrent completions of the
    same lesson never compute from a stale count. Serialization conflicts are retried; anything else
    propagates.
    """
    if not learner_id:
      raise ValidationError("learner_id is required.")
    if time_spent_seconds < 0:
      raise ValidationError("time_spent_seconds must be zero or positive.")

    section = await self._content_repo.get_section(section_id)
    if section is None:
      raise NotFoundError(f"Section {section_id} does not exist.")
    if section.lesson_id != lesson_id:
      raise ValidationError(f"Section {section_id} does not belong to lesson {lesson_id}.")
    lesson = await self._content_repo.get_lesson(lesson_id)
    if lesson is None:
      raise NotFoundError(f"Lesson {lesson_id} does not exist.")

    async def _apply() -> ProgressUpdate:
      async with self._progress_repo.transaction() as tx:
        return await self._apply_in_transaction(tx, learner_id=learner_id, lesson_id=lesson_id, course_id=lesson.course_id, section_id=section_id, time_spent_seconds=time_spent_seconds)

    update = await execute_with_retry(operation_name="record_section_completion", func=_apply, max_attempts=self._max_attempts)
    logger.info(
      "Section completion recorded learner_id=%s lesson_id=%s lesson_percent=%d course_percent=%d thresholds=%s",
      learner_id,
      lesson_id,
      update.lesson_percent,
      update.course_percent,
      ",".join(update.newly_crossed_thresholds) or "-",
    )
    return update

  async def _apply_in_transaction(self, tx: ProgressTransaction, *, learner_id: str, lesson_id: str, course_id: str, section_id: str, time_spent_seconds: int) -> ProgressUpdate:
    now = self._clock()

    # Section: re-marking keeps the first completion time and accumulates time spent.
    existing = await tx.get_section_progress(learner_id, section_id)
    completed_at = existing.completed_at if existing is not None and existing.completed_at is not None else now
    accumulated = (existing.time_spent_seconds if existing is not None else 0) + time_spent_seconds
    await tx.upsert_section_progress(SectionProgressRecord(learner_id=learner_id, section_id=section_id, lesson_id=lesson_id, completed=True, time_spent_seconds=accumulated, completed_at=completed_at, updated_at=now))

    # Lesson: recompute from every section of the lesson as seen by this transaction.
    section_ids = await tx.list_lesson_section_ids(lesson_id)
    section_records = await tx.list_section_progress(learner_id, section_ids)
    completed_sections = sum(1 for record in section_records if record.completed)
    lesson_pct = lesson_percent(completed_sections, len(section_ids))
    lesson_done = len(section_ids) > 0 and completed_sections == len(section_ids)
    previous_lesson = await tx.get_lesson_progress(learner_id, lesson_id)
    lesson_time = sum(record.time_spent_seconds for record in section_records)
    await tx.upsert_lesson_progress(LessonProgressRecord(learner_id=learner_id, lesson_id=lesson_id, course_id=course_id, percent=lesson_pct, completed=lesson_done, time_spent_seconds=lesson_time, updated_at=now))

    # Course: mean over all lessons; a lesson without a row counts as 0.
    lesson_ids = await tx.list_course_lesson_ids(course_id)
    lesson_records = {record.lesson_id: record for record in await tx.list_lesson_progress(learner_id, lesson_ids)}
    course_pct = course_percent([lesson_records[item].percent if item in lesson_records else 0 for item in lesson_ids])
    course_done = len(lesson_ids) > 0 and all(item in lesson_records and lesson_records[item].completed for item in lesson_ids)
    previous_course = await tx.get_course_progress(learner_id, course_id)
    course_time = sum(record.time_spent_seconds for record in lesson_records.values())
    await tx.upsert_course_progress(CourseProgressRecord(learner_id=learner_id, course_id=course_id, percent=course_pct, completed=course_done, time_spent_seconds=course_time, updated_at=now))

    await tx.record_activity(learner_id, now.date())

    thresholds: list[str] = []
    if lesson_done and not (previous_lesson is not None and previous_lesson.completed):
      thresholds.append(LESSON_COMPLETED)
    if course_done and not (previous_course is not None and previous_course.completed):
      thresholds.append(COURSE_COMPLETED)

    return ProgressUpdate(
      learner_id=learner_id,
      lesson_id=lesson_id,
      course_id=course_id,
      lesson_percent=lesson_pct,
      course_percent=course_pct,
      lesson_completed=lesson_done,
      course_completed=course_done,
      newly_crossed_thresholds=tuple(thresholds),
      occurred_at=now,
    )

  async def get_course_progress(self, learner_id: str, course_id: str) -> CourseProgressSnapshot:
    course = await self._content_repo.get_course(course_id)
    if course is None:
      raise NotFoundError(f"Course {course_id} does not exist.")

    record = await self._progress_repo.get_course_progress(learner_id, course_id)
    lessons = await self._progress_repo.list_lesson_progress(learner_id, course_id)
    if record is None:
      return CourseProgressSnapshot(learner_id=learner_id, course_id=course_id, percent=0, completed=False, time_spent_seconds=0, lessons=lessons)
    return CourseProgressSnapshot(learner_id=learner_id, course_id=course_id, percent=record.percent, completed=record.completed, time_spent_seconds=record.time_spent_seconds, lessons=lessons)
