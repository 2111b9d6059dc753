from __future__ import annotations

import datetime

from sqlalchemy import Boolean, Date, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from coursegen.core.database import Base

# Progress rows reference content by id only; content rows may be regenerated before a course is published.


class SectionProgress(Base):
  __tablename__ = "section_progress"
  __table_args__ = (UniqueConstraint("learner_id", "section_id", name="ux_section_progress_learner_section"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  learner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  section_id: Mapped[str] = mapped_column(String, nullable=False)
  lesson_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  time_spent_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  completed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class LessonProgress(Base):
  __tablename__ = "lesson_progress"
  __table_args__ = (UniqueConstraint("learner_id", "lesson_id", name="ux_lesson_progress_learner_lesson"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  learner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  lesson_id: Mapped[str] = mapped_column(String, nullable=False)
  course_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  time_spent_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CourseProgress(Base):
  __tablename__ = "course_progress"
  __table_args__ = (UniqueConstraint("learner_id", "course_id", name="ux_course_progress_learner_course"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  learner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  course_id: Mapped[str] = mapped_column(String, nullable=False)
  percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  time_spent_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class LearnerActivity(Base):
  __tablename__ = "learner_activity"
  __table_args__ = (UniqueConstraint("learner_id", "activity_date", name="ux_learner_activity_learner_date"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  learner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  activity_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)


class Achievement(Base):
  __tablename__ = "achievements"
  __table_args__ = (UniqueConstraint("learner_id", "achievement_type", name="ux_achievements_learner_type"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  learner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  achievement_type: Mapped[str] = mapped_column(String, nullable=False)
  details: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  granted_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
