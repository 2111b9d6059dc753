"""Postgres-backed repository for learner progress and achievements."""

from __future__ import annotations

import datetime
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursegen.core.database import get_session_factory, storage_session
from coursegen.schema.content import Lesson, Section
from coursegen.schema.progress import Achievement, CourseProgress, LearnerActivity, LessonProgress, SectionProgress
from coursegen.storage.progress_repo import AchievementRecord, CourseProgressRecord, LearnerStatistics, LessonProgressRecord, ProgressRepository, ProgressTransaction, SectionProgressRecord


class PostgresProgressTransaction(ProgressTransaction):
  """Progress reads and writes bound to one SERIALIZABLE session."""

  def __init__(self, session: AsyncSession) -> None:
    self._session = session

  async def get_section_progress(self, learner_id: str, section_id: str) -> SectionProgressRecord | None:
    stmt = select(SectionProgress).where(SectionProgress.learner_id == learner_id, SectionProgress.section_id == section_id)
    row = (await self._session.execute(stmt)).scalar_one_or_none()
    return _section_to_record(row) if row is not None else None

  async def upsert_section_progress(self, record: SectionProgressRecord) -> None:
    stmt = insert(SectionProgress).values(
      learner_id=record.learner_id,
      section_id=record.section_id,
      lesson_id=record.lesson_id,
      completed=record.completed,
      time_spent_seconds=record.time_spent_seconds,
      completed_at=record.completed_at,
      updated_at=record.updated_at,
    )
    stmt = stmt.on_conflict_do_update(
      constraint="ux_section_progress_learner_section",
      set_={"completed": record.completed, "time_spent_seconds": record.time_spent_seconds, "completed_at": record.completed_at, "updated_at": record.updated_at},
    )
    await self._session.execute(stmt)

  async def list_lesson_section_ids(self, lesson_id: str) -> list[str]:
    stmt = select(Section.section_id).where(Section.lesson_id == lesson_id).order_by(Section.order_index.asc())
    return [str(item) for item in (await self._session.execute(stmt)).scalars().all()]

  async def list_section_progress(self, learner_id: str, section_ids: list[str]) -> list[SectionProgressRecord]:
    if not section_ids:
      return []
    stmt = select(SectionProgress).where(SectionProgress.learner_id == learner_id, SectionProgress.section_id.in_(section_ids))
    return [_section_to_record(row) for row in (await self._session.execute(stmt)).scalars().all()]

  async def get_lesson_progress(self, learner_id: str, lesson_id: str) -> LessonProgressRecord | None:
    stmt = select(LessonProgress).where(LessonProgress.learner_id == learner_id, LessonProgress.lesson_id == lesson_id)
    row = (await self._session.execute(stmt)).scalar_one_or_none()
    return _lesson_to_record(row) if row is not None else None

  async def upsert_lesson_progress(self, record: LessonProgressRecord) -> None:
    stmt = insert(LessonProgress).values(
      learner_id=record.learner_id,
      lesson_id=record.lesson_id,
      course_id=record.course_id,
      percent=record.percent,
      completed=record.completed,
      time_spent_seconds=record.time_spent_seconds,
      updated_at=record.updated_at,
    )
    stmt = stmt.on_conflict_do_update(
      constraint="ux_lesson_progress_learner_lesson",
      set_={"percent": record.percent, "completed": record.completed, "time_spent_seconds": record.time_spent_seconds, "updated_at": record.updated_at},
    )
    await self._session.execute(stmt)

  async def list_course_lesson_ids(self, course_id: str) -> list[str]:
    stmt = select(Lesson.lesson_id).where(Lesson.course_id == course_id)
    return [str(item) for item in (await self._session.execute(stmt)).scalars().all()]

  async def list_lesson_progress(self, learner_id: str, lesson_ids: list[str]) -> list[LessonProgressRecord]:
    if not lesson_ids:
      return []
    stmt = select(LessonProgress).where(LessonProgress.learner_id == learner_id, LessonProgress.lesson_id.in_(lesson_ids))
    return [_lesson_to_record(row) for row in (await self._session.execute(stmt)).scalars().all()]

  async def get_course_progress(self, learner_id: str, course_id: str) -> CourseProgressRecord | None:
    stmt = select(CourseProgress).where(CourseProgress.learner_id == learner_id, CourseProgress.course_id == course_id)
    row = (await self._session.execute(stmt)).scalar_one_or_none()
    return _course_to_record(row) if row is not None else None

  async def upsert_course_progress(self, record: CourseProgressRecord) -> None:
    stmt = insert(CourseProgress).values(
      learner_id=record.learner_id,
      course_id=record.course_id,
      percent=record.percent,
      completed=record.completed,
      time_spent_seconds=record.time_spent_seconds,
      updated_at=record.updated_at,
    )
    stmt = stmt.on_conflict_do_update(
      constraint="ux_course_progress_learner_course",
      set_={"percent": record.percent, "completed": record.completed, "time_spent_seconds": record.time_spent_seconds, "updated_at": record.updated_at},
    )
    await self._session.execute(stmt)

  async def record_activity(self, learner_id: str, day: datetime.date) -> None:
    stmt = insert(LearnerActivity).values(learner_id=learner_id, activity_date=day).on_conflict_do_nothing(constraint="ux_learner_activity_learner_date")
    await self._session.execute(stmt)


class PostgresProgressRepository(ProgressRepository):
  """Persist learner progress to Postgres using SQLAlchemy."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  @asynccontextmanager
  async def transaction(self) -> AsyncIterator[ProgressTransaction]:
    # Driver errors propagate unwrapped so the retry loop can read the SQLSTATE.
    async with self._session_factory() as session:
      await session.connection(execution_options={"isolation_level": "SERIALIZABLE"})
      try:
        yield PostgresProgressTransaction(session)
        await session.commit()
      except BaseException:
        await session.rollback()
        raise

  async def get_course_progress(self, learner_id: str, course_id: str) -> CourseProgressRecord | None:
    async with storage_session(self._session_factory, operation="get_course_progress") as session:
      return await PostgresProgressTransaction(session).get_course_progress(learner_id, course_id)

  async def list_lesson_progress(self, learner_id: str, course_id: str) -> list[LessonProgressRecord]:
    async with storage_session(self._session_factory, operation="list_lesson_progress") as session:
      stmt = select(LessonProgress).where(LessonProgress.learner_id == learner_id, LessonProgress.course_id == course_id)
      return [_lesson_to_record(row) for row in (await session.execute(stmt)).scalars().all()]

  async def get_learner_statistics(self, learner_id: str) -> LearnerStatistics:
    async with storage_session(self._session_factory, operation="get_learner_statistics") as session:
      lessons_stmt = select(func.count()).select_from(LessonProgress).where(LessonProgress.learner_id == learner_id, LessonProgress.completed.is_(True))
      courses_stmt = select(func.count()).select_from(CourseProgress).where(CourseProgress.learner_id == learner_id, CourseProgress.completed.is_(True))
      days_stmt = select(LearnerActivity.activity_date).where(LearnerActivity.learner_id == learner_id)
      completed_lessons = await session.scalar(lessons_stmt)
      completed_courses = await session.scalar(courses_stmt)
      days = (await session.execute(days_stmt)).scalars().all()
      return LearnerStatistics(completed_lessons=int(completed_lessons or 0), completed_courses=int(completed_courses or 0), activity_days=frozenset(days))

  async def grant_achievement(self, learner_id: str, achievement_type: str, details: dict[str, Any]) -> AchievementRecord | None:
    # The unique constraint, not application locking, keeps concurrent grants to one row.
    stmt = insert(Achievement).values(learner_id=learner_id, achievement_type=achievement_type, details=details).on_conflict_do_nothing(constraint="ux_achievements_learner_type").returning(Achievement)
    async with storage_session(self._session_factory, operation="grant_achievement") as session:
      row = (await session.scalars(stmt)).one_or_none()
      await session.commit()
      if row is None:
        return None
      return _achievement_to_record(row)

  async def list_achievements(self, learner_id: str) -> list[AchievementRecord]:
    async with storage_session(self._session_factory, operation="list_achievements") as session:
      stmt = select(Achievement).where(Achievement.learner_id == learner_id).order_by(Achievement.granted_at.asc(), Achievement.id.asc())
      return [_achievement_to_record(row) for row in (await session.execute(stmt)).scalars().all()]


def _section_to_record(row: SectionProgress) -> SectionProgressRecord:
  return SectionProgressRecord(
    learner_id=row.learner_id,
    section_id=row.section_id,
    lesson_id=row.lesson_id,
    completed=bool(row.completed),
    time_spent_seconds=int(row.time_spent_seconds),
    completed_at=row.completed_at,
    updated_at=row.updated_at,
  )


def _lesson_to_record(row: LessonProgress) -> LessonProgressRecord:
  return LessonProgressRecord(
    learner_id=row.learner_id,
    lesson_id=row.lesson_id,
    course_id=row.course_id,
    percent=int(row.percent),
    completed=bool(row.completed),
    time_spent_seconds=int(row.time_spent_seconds),
    updated_at=row.updated_at,
  )


def _course_to_record(row: CourseProgress) -> CourseProgressRecord:
  return CourseProgressRecord(
    learner_id=row.learner_id,
    course_id=row.course_id,
    percent=int(row.percent),
    completed=bool(row.completed),
    time_spent_seconds=int(row.time_spent_seconds),
    updated_at=row.updated_at,
  )


def _achievement_to_record(row: Achievement) -> AchievementRecord:
  return AchievementRecord(learner_id=row.learner_id, achievement_type=row.achievement_type, granted_at=row.granted_at, details=dict(row.details or {}))
