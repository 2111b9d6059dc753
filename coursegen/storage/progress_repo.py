"""Storage interfaces and records for learner progress and achievements."""

from __future__ import annotations

import datetime
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class SectionProgressRecord:
  learner_id: str
  section_id: str
  lesson_id: str
  completed: bool
  time_spent_seconds: int
  completed_at: datetime.datetime | None
  updated_at: datetime.datetime


@dataclass(frozen=True)
class LessonProgressRecord:
  learner_id: str
  lesson_id: str
  course_id: str
  percent: int
  completed: bool
  time_spent_seconds: int
  updated_at: datetime.datetime


@dataclass(frozen=True)
class CourseProgressRecord:
  learner_id: str
  course_id: str
  percent: int
  completed: bool
  time_spent_seconds: int
  updated_at: datetime.datetime


@dataclass(frozen=True)
class AchievementRecord:
  learner_id: str
  achievement_type: str
  granted_at: datetime.datetime
  details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LearnerStatistics:
  """Aggregate facts the achievement rules evaluate."""

  completed_lessons: int
  completed_courses: int
  activity_days: frozenset[datetime.date]


class ProgressTransaction(Protocol):
  """Reads and writes that share one atomic unit of work.

  Implementations must serialize concurrent transactions touching the same learner subtree, raising
  ConcurrencyConflict (or a serialization-failure database error) when they cannot.
  """

  async def get_section_progress(self, learner_id: str, section_id: str) -> SectionProgressRecord | None: ...

  async def upsert_section_progress(self, record: SectionProgressRecord) -> None: ...

  async def list_lesson_section_ids(self, lesson_id: str) -> list[str]: ...

  async def list_section_progress(self, learner_id: str, section_ids: list[str]) -> list[SectionProgressRecord]: ...

  async def get_lesson_progress(self, learner_id: str, lesson_id: str) -> LessonProgressRecord | None: ...

  async def upsert_lesson_progress(self, record: LessonProgressRecord) -> None: ...

  async def list_course_lesson_ids(self, course_id: str) -> list[str]: ...

  async def list_lesson_progress(self, learner_id: str, lesson_ids: list[str]) -> list[LessonProgressRecord]: ...

  async def get_course_progress(self, learner_id: str, course_id: str) -> CourseProgressRecord | None: ...

  async def upsert_course_progress(self, record: CourseProgressRecord) -> None: ...

  async def record_activity(self, learner_id: str, day: datetime.date) -> None: ...


class ProgressRepository(Protocol):
  """Repository contract for learner progress and achievements."""

  def transaction(self) -> AbstractAsyncContextManager[ProgressTransaction]:
    """Open an atomic unit of work; commits on clean exit, rolls back on error."""

  async def get_course_progress(self, learner_id: str, course_id: str) -> CourseProgressRecord | None:
    """Read the derived course progress row."""

  async def list_lesson_progress(self, learner_id: str, course_id: str) -> list[LessonProgressRecord]:
    """Read the derived lesson progress rows for one course."""

  async def get_learner_statistics(self, learner_id: str) -> LearnerStatistics:
    """Snapshot the counts the achievement rules depend on."""

  async def grant_achievement(self, learner_id: str, achievement_type: str, details: dict[str, Any]) -> AchievementRecord | None:
    """Insert an achievement unless one exists; returns the row only if this call inserted it."""

  async def list_achievements(self, learner_id: str) -> list[AchievementRecord]:
    """List a learner's achievements, oldest first."""
