"""Learner progress and achievement APIs."""

from __future__ import annotations

import datetime
from typing import Any

import msgspec
from fastapi import APIRouter, Depends, Request

from coursegen.api.deps import get_runtime
from coursegen.api.msgspec_utils import decode_msgspec_request, encode_msgspec_response
from coursegen.services.runtime import Runtime
from coursegen.storage.progress_repo import AchievementRecord

router = APIRouter()


class SectionCompletionRequest(msgspec.Struct, rename="camel", forbid_unknown_fields=True):
  """Request payload for marking one section complete."""

  learner_id: str
  lesson_id: str
  section_id: str
  time_spent_seconds: int = 0


class AchievementResponse(msgspec.Struct, rename="camel"):
  achievement_type: str
  granted_at: datetime.datetime
  details: dict[str, Any]


class SectionCompletionResponse(msgspec.Struct, rename="camel"):
  lesson_id: str
  course_id: str
  lesson_percent: int
  course_percent: int
  lesson_completed: bool
  course_completed: bool
  newly_crossed_thresholds: list[str]
  granted_achievements: list[AchievementResponse]


class LessonProgressResponse(msgspec.Struct, rename="camel"):
  lesson_id: str
  percent: int
  completed: bool
  time_spent_seconds: int


class CourseProgressResponse(msgspec.Struct, rename="camel"):
  learner_id: str
  course_id: str
  percent: int
  completed: bool
  time_spent_seconds: int
  lessons: list[LessonProgressResponse]


def _serialize_achievement(record: AchievementRecord) -> AchievementResponse:
  return AchievementResponse(achievement_type=record.achievement_type, granted_at=record.granted_at, details=dict(record.details))


@router.post("/sections")
async def complete_section(request: Request, runtime: Runtime = Depends(get_runtime)):  # noqa: B008
  """Record a section completion and return the recomputed lesson and course progress."""
  payload = await decode_msgspec_request(request, SectionCompletionRequest)
  result = await runtime.progress.record_section_completion(
    learner_id=payload.learner_id, lesson_id=payload.lesson_id, section_id=payload.section_id, time_spent_seconds=payload.time_spent_seconds
  )
  update = result.update
  return encode_msgspec_response(
    SectionCompletionResponse(
      lesson_id=update.lesson_id,
      course_id=update.course_id,
      lesson_percent=update.lesson_percent,
      course_percent=update.course_percent,
      lesson_completed=update.lesson_completed,
      course_completed=update.course_completed,
      newly_crossed_thresholds=list(update.newly_crossed_thresholds),
      granted_achievements=[_serialize_achievement(record) for record in result.granted],
    )
  )


@router.get("/learners/{learner_id}/courses/{course_id}")
async def get_course_progress(learner_id: str, course_id: str, runtime: Runtime = Depends(get_runtime)):  # noqa: B008
  snapshot = await runtime.progress.get_course_progress(learner_id=learner_id, course_id=course_id)
  lessons = [LessonProgressResponse(lesson_id=item.lesson_id, percent=item.percent, completed=item.completed, time_spent_seconds=item.time_spent_seconds) for item in snapshot.lessons]
  return encode_msgspec_response(
    CourseProgressResponse(learner_id=snapshot.learner_id, course_id=snapshot.course_id, percent=snapshot.percent, completed=snapshot.completed, time_spent_seconds=snapshot.time_spent_seconds, lessons=lessons)
  )


@router.get("/learners/{learner_id}/achievements")
async def list_achievements(learner_id: str, runtime: Runtime = Depends(get_runtime)):  # noqa: B008
  records = await runtime.progress.list_achievements(learner_id=learner_id)
  return encode_msgspec_response([_serialize_achievement(record) for record in records])
