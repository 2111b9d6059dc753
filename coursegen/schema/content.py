from __future__ import annotations

from sqlalchemy import ARRAY, Float, ForeignKey, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from coursegen.core.database import Base

_UTC_NOW_TEXT = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


class Course(Base):
  __tablename__ = "courses"

  course_id: Mapped[str] = mapped_column(String, primary_key=True)
  job_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  summary: Mapped[str] = mapped_column(Text, nullable=False)
  difficulty: Mapped[str] = mapped_column(String, nullable=False)
  estimated_hours: Mapped[float] = mapped_column(Float, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False)
  prerequisites: Mapped[list[str] | None] = mapped_column(ARRAY(Text), nullable=True)
  thumbnail_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
  total_modules: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  total_lessons: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  total_sections: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_TEXT)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_TEXT)


class Module(Base):
  __tablename__ = "modules"
  __table_args__ = (UniqueConstraint("course_id", "order_index", name="ux_modules_course_order_index"),)

  module_id: Mapped[str] = mapped_column(String, primary_key=True)
  course_id: Mapped[str] = mapped_column(ForeignKey("courses.course_id", ondelete="CASCADE"), nullable=False, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  summary: Mapped[str] = mapped_column(Text, nullable=False)
  order_index: Mapped[int] = mapped_column(Integer, nullable=False)
  objectives: Mapped[list[str] | None] = mapped_column(ARRAY(Text), nullable=True)


class Lesson(Base):
  __tablename__ = "lessons"
  __table_args__ = (UniqueConstraint("module_id", "order_index", name="ux_lessons_module_order_index"),)

  lesson_id: Mapped[str] = mapped_column(String, primary_key=True)
  course_id: Mapped[str] = mapped_column(ForeignKey("courses.course_id", ondelete="CASCADE"), nullable=False, index=True)
  module_id: Mapped[str] = mapped_column(ForeignKey("modules.module_id", ondelete="CASCADE"), nullable=False, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  summary: Mapped[str] = mapped_column(Text, nullable=False)
  order_index: Mapped[int] = mapped_column(Integer, nullable=False)
  estimated_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)


class Section(Base):
  __tablename__ = "sections"
  __table_args__ = (UniqueConstraint("lesson_id", "order_index", name="ux_sections_lesson_order_index"),)

  section_id: Mapped[str] = mapped_column(String, primary_key=True)
  course_id: Mapped[str] = mapped_column(ForeignKey("courses.course_id", ondelete="CASCADE"), nullable=False, index=True)
  lesson_id: Mapped[str] = mapped_column(ForeignKey("lessons.lesson_id", ondelete="CASCADE"), nullable=False, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  kind: Mapped[str] = mapped_column(String, nullable=False)
  order_index: Mapped[int] = mapped_column(Integer, nullable=False)
  content: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
