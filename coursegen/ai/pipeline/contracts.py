"""Validation contracts for each stage's generator output."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

SectionKind = Literal["text", "example", "exercise", "quiz"]


class _Payload(BaseModel):
  # Unknown keys from the model are dropped rather than rejected.
  model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class OutlineModule(_Payload):
  title: str = Field(min_length=1, max_length=200)
  summary: str = Field(min_length=1)


class OutlinePayload(_Payload):
  """Course skeleton produced by the outline stage."""

  title: str = Field(min_length=1, max_length=200)
  summary: str = Field(min_length=1)
  prerequisites: list[str] = Field(default_factory=list, max_length=20)
  modules: list[OutlineModule] = Field(min_length=1, max_length=12)


class ModuleDetail(_Payload):
  title: str = Field(min_length=1, max_length=200)
  summary: str = Field(min_length=1)
  objectives: list[str] = Field(min_length=1, max_length=10)


class ModulesPayload(_Payload):
  """Expanded modules, one entry per outline module in the same order."""

  modules: list[ModuleDetail] = Field(min_length=1, max_length=12)


class LessonDetail(_Payload):
  title: str = Field(min_length=1, max_length=200)
  summary: str = Field(min_length=1)
  estimated_minutes: int | None = Field(default=None, ge=1, le=600)


class LessonsPayload(_Payload):
  """Lessons for a single module."""

  lessons: list[LessonDetail] = Field(min_length=1, max_length=12)


class SectionDetail(_Payload):
  title: str = Field(min_length=1, max_length=200)
  kind: SectionKind
  body: str = Field(min_length=1)
  data: dict[str, Any] | None = None


class SectionsPayload(_Payload):
  """Sections for a single lesson."""

  sections: list[SectionDetail] = Field(min_length=1, max_length=12)


class ThumbnailPayload(_Payload):
  """Illustration prompt for the course thumbnail."""

  prompt: str = Field(min_length=1, max_length=2000)
