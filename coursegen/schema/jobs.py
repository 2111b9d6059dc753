from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from coursegen.core.database import Base

_UTC_NOW_TEXT = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


class GenerationJob(Base):
  __tablename__ = "generation_jobs"
  __table_args__ = (Index("ix_generation_jobs_active", "created_at", postgresql_where=text("status IN ('pending', 'running', 'stage_failed')")),)

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  request_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  stage: Mapped[str] = mapped_column(String, nullable=False)
  attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  course_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  last_error: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_TEXT)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_TEXT)
  completed_at: Mapped[str | None] = mapped_column(String, nullable=True)


class StageResult(Base):
  __tablename__ = "stage_results"
  __table_args__ = (UniqueConstraint("job_id", "stage", name="ux_stage_results_job_stage"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  job_id: Mapped[str] = mapped_column(ForeignKey("generation_jobs.job_id", ondelete="CASCADE"), nullable=False, index=True)
  stage: Mapped[str] = mapped_column(String, nullable=False)
  ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False)
  raw_payload: Mapped[str | None] = mapped_column(Text, nullable=True)
  parsed_payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  error: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_TEXT)
