"""Postgres-backed repository for generated course content."""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursegen.core.database import get_session_factory, storage_session
from coursegen.jobs.models import now_iso
from coursegen.schema.content import Course, Lesson, Module, Section
from coursegen.storage.content_repo import ContentRepository, CourseRecord, CourseStatus, LessonRecord, ModuleRecord, SectionRecord


class PostgresContentRepository(ContentRepository):
  """Persist the course tree to Postgres using SQLAlchemy."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def upsert_course(self, record: CourseRecord) -> CourseRecord:
    timestamp = now_iso()
    values = {
      "course_id": record.course_id,
      "job_id": record.job_id,
      "title": record.title,
      "summary": record.summary,
      "difficulty": record.difficulty,
      "estimated_hours": record.estimated_hours,
      "status": record.status,
      "prerequisites": list(record.prerequisites),
      "created_at": timestamp,
      "updated_at": timestamp,
    }
    # One course per job: a rerun of the outline stage keeps the original course_id.
    stmt = insert(Course).values(**values)
    stmt = stmt.on_conflict_do_update(
      index_elements=["job_id"],
      set_={"title": record.title, "summary": record.summary, "difficulty": record.difficulty, "estimated_hours": record.estimated_hours, "status": record.status, "prerequisites": list(record.prerequisites), "updated_at": timestamp},
    ).returning(Course)
    async with storage_session(self._session_factory, operation="upsert_course") as session:
      row = (await session.scalars(stmt)).one()
      await session.commit()
      return self._course_to_record(row)

  async def get_course(self, course_id: str) -> CourseRecord | None:
    async with storage_session(self._session_factory, operation="get_course") as session:
      row = await session.get(Course, course_id)
      if row is None:
        return None
      return self._course_to_record(row)

  async def update_course(self, course_id: str, *, status: CourseStatus | None = None, thumbnail_prompt: str | None = None, total_modules: int | None = None, total_lessons: int | None = None, total_sections: int | None = None) -> CourseRecord | None:
    async with storage_session(self._session_factory, operation="update_course") as session:
      row = await session.get(Course, course_id)
      if row is None:
        return None
      if status is not None:
        row.status = status
      if thumbnail_prompt is not None:
        row.thumbnail_prompt = thumbnail_prompt
      if total_modules is not None:
        row.total_modules = total_modules
      if total_lessons is not None:
        row.total_lessons = total_lessons
      if total_sections is not None:
        row.total_sections = total_sections
      row.updated_at = now_iso()
      session.add(row)
      await session.commit()
      await session.refresh(row)
      return self._course_to_record(row)

  async def replace_modules(self, course_id: str, modules: list[ModuleRecord]) -> None:
    async with storage_session(self._session_factory, operation="replace_modules") as session:
      # Lessons and sections cascade with their module.
      await session.execute(delete(Module).where(Module.course_id == course_id))
      session.add_all([Module(module_id=item.module_id, course_id=course_id, title=item.title, summary=item.summary, order_index=item.order_index, objectives=list(item.objectives)) for item in modules])
      await session.commit()

  async def replace_lessons(self, course_id: str, lessons: list[LessonRecord]) -> None:
    async with storage_session(self._session_factory, operation="replace_lessons") as session:
      await session.execute(delete(Lesson).where(Lesson.course_id == course_id))
      session.add_all(
        [
          Lesson(lesson_id=item.lesson_id, course_id=course_id, module_id=item.module_id, title=item.title, summary=item.summary, order_index=item.order_index, estimated_minutes=item.estimated_minutes)
          for item in lessons
        ]
      )
      await session.commit()

  async def replace_sections(self, course_id: str, sections: list[SectionRecord]) -> None:
    async with storage_session(self._session_factory, operation="replace_sections") as session:
      await session.execute(delete(Section).where(Section.course_id == course_id))
      session.add_all(
        [Section(section_id=item.section_id, course_id=course_id, lesson_id=item.lesson_id, title=item.title, kind=item.kind, order_index=item.order_index, content=item.content) for item in sections]
      )
      await session.commit()

  async def list_modules(self, course_id: str) -> list[ModuleRecord]:
    async with storage_session(self._session_factory, operation="list_modules") as session:
      stmt = select(Module).where(Module.course_id == course_id).order_by(Module.order_index.asc())
      rows = (await session.execute(stmt)).scalars().all()
      return [self._module_to_record(row) for row in rows]

  async def list_lessons(self, course_id: str) -> list[LessonRecord]:
    async with storage_session(self._session_factory, operation="list_lessons") as session:
      stmt = select(Lesson).join(Module, Module.module_id == Lesson.module_id).where(Lesson.course_id == course_id).order_by(Module.order_index.asc(), Lesson.order_index.asc())
      rows = (await session.execute(stmt)).scalars().all()
      return [self._lesson_to_record(row) for row in rows]

  async def list_sections(self, course_id: str) -> list[SectionRecord]:
    async with storage_session(self._session_factory, operation="list_sections") as session:
      stmt = (
        select(Section)
        .join(Lesson, Lesson.lesson_id == Section.lesson_id)
        .join(Module, Module.module_id == Lesson.module_id)
        .where(Section.course_id == course_id)
        .order_by(Module.order_index.asc(), Lesson.order_index.asc(), Section.order_index.asc())
      )
      rows = (await session.execute(stmt)).scalars().all()
      return [self._section_to_record(row) for row in rows]

  async def get_lesson(self, lesson_id: str) -> LessonRecord | None:
    async with storage_session(self._session_factory, operation="get_lesson") as session:
      row = await session.get(Lesson, lesson_id)
      if row is None:
        return None
      return self._lesson_to_record(row)

  async def get_section(self, section_id: str) -> SectionRecord | None:
    async with storage_session(self._session_factory, operation="get_section") as session:
      row = await session.get(Section, section_id)
      if row is None:
        return None
      return self._section_to_record(row)

  def _course_to_record(self, row: Course) -> CourseRecord:
    return CourseRecord(
      course_id=row.course_id,
      job_id=row.job_id,
      title=row.title,
      summary=row.summary,
      difficulty=row.difficulty,
      estimated_hours=float(row.estimated_hours),
      status=row.status,  # type: ignore[arg-type]
      prerequisites=list(row.prerequisites or []),
      thumbnail_prompt=row.thumbnail_prompt,
      total_modules=int(row.total_modules),
      total_lessons=int(row.total_lessons),
      total_sections=int(row.total_sections),
      created_at=row.created_at,
      updated_at=row.updated_at,
    )

  def _module_to_record(self, row: Module) -> ModuleRecord:
    return ModuleRecord(module_id=row.module_id, course_id=row.course_id, title=row.title, summary=row.summary, order_index=int(row.order_index), objectives=list(row.objectives or []))

  def _lesson_to_record(self, row: Lesson) -> LessonRecord:
    return LessonRecord(lesson_id=row.lesson_id, course_id=row.course_id, module_id=row.module_id, title=row.title, summary=row.summary, order_index=int(row.order_index), estimated_minutes=row.estimated_minutes)

  def _section_to_record(self, row: Section) -> SectionRecord:
    return SectionRecord(section_id=row.section_id, course_id=row.course_id, lesson_id=row.lesson_id, title=row.title, kind=row.kind, order_index=int(row.order_index), content=row.content)
