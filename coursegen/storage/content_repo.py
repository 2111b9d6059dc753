"""Storage interfaces and records for generated course content."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

CourseStatus = Literal["generating", "ready", "failed"]


@dataclass(frozen=True)
class CourseRecord:
  """Record stored in the courses table; one per generation job."""

  course_id: str
  job_id: str
  title: str
  summary: str
  difficulty: str
  estimated_hours: float
  status: CourseStatus
  prerequisites: list[str] = field(default_factory=list)
  thumbnail_prompt: str | None = None
  total_modules: int = 0
  total_lessons: int = 0
  total_sections: int = 0
  created_at: str | None = None
  updated_at: str | None = None


@dataclass(frozen=True)
class ModuleRecord:
  module_id: str
  course_id: str
  title: str
  summary: str
  order_index: int
  objectives: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class LessonRecord:
  lesson_id: str
  course_id: str
  module_id: str
  title: str
  summary: str
  order_index: int
  estimated_minutes: int | None = None


@dataclass(frozen=True)
class SectionRecord:
  section_id: str
  course_id: str
  lesson_id: str
  title: str
  kind: str
  order_index: int
  content: dict[str, Any] | None = None


class ContentRepository(Protocol):
  """Repository contract for the course/module/lesson/section tree."""

  async def upsert_course(self, record: CourseRecord) -> CourseRecord:
    """Create the course for a job, or update the one that already exists for it."""

  async def get_course(self, course_id: str) -> CourseRecord | None:
    """Fetch a course by identifier."""

  async def update_course(self, course_id: str, *, status: CourseStatus | None = None, thumbnail_prompt: str | None = None, total_modules: int | None = None, total_lessons: int | None = None, total_sections: int | None = None) -> CourseRecord | None:
    """Apply partial updates to a course."""

  async def replace_modules(self, course_id: str, modules: list[ModuleRecord]) -> None:
    """Atomically replace every module of a course, dropping their lessons and sections."""

  async def replace_lessons(self, course_id: str, lessons: list[LessonRecord]) -> None:
    """Atomically replace every lesson of a course, dropping their sections."""

  async def replace_sections(self, course_id: str, sections: list[SectionRecord]) -> None:
    """Atomically replace every section of a course."""

  async def list_modules(self, course_id: str) -> list[ModuleRecord]:
    """List modules ordered by order_index."""

  async def list_lessons(self, course_id: str) -> list[LessonRecord]:
    """List lessons ordered by module order then lesson order."""

  async def list_sections(self, course_id: str) -> list[SectionRecord]:
    """List sections ordered by lesson position then section order."""

  async def get_lesson(self, lesson_id: str) -> LessonRecord | None:
    """Fetch one lesson."""

  async def get_section(self, section_id: str) -> SectionRecord | None:
    """Fetch one section."""
