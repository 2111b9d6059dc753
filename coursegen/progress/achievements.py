"""Rule evaluation and idempotent granting of learner achievements."""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any

from coursegen.storage.progress_repo import AchievementRecord, LearnerStatistics, ProgressRepository

logger = logging.getLogger(__name__)

FIRST_LESSON_COMPLETED = "first_lesson_completed"
FIRST_COURSE_COMPLETED = "first_course_completed"


@dataclass(frozen=True)
class AchievementTrigger:
  """The event that prompted an evaluation; its date anchors streak rules."""

  kind: str
  occurred_at: datetime.datetime
  course_id: str | None = None
  lesson_id: str | None = None


def streak_length(activity_days: frozenset[datetime.date], ending: datetime.date) -> int:
  """Count consecutive UTC days with activity ending on `ending`."""
  length = 0
  day = ending
  while day in activity_days:
    length += 1
    day -= datetime.timedelta(days=1)
  return length


def evaluate_rules(stats: LearnerStatistics, *, on: datetime.date, streak_thresholds: tuple[int, ...], course_milestone_every: int) -> list[tuple[str, dict[str, Any]]]:
  """Return every achievement the statistics qualify for, in rule order."""
  qualifying: list[tuple[str, dict[str, Any]]] = []
  if stats.completed_lessons >= 1:
    qualifying.append((FIRST_LESSON_COMPLETED, {"completed_lessons": stats.completed_lessons}))
  if stats.completed_courses >= 1:
    qualifying.append((FIRST_COURSE_COMPLETED, {"completed_courses": stats.completed_courses}))

  streak = streak_length(stats.activity_days, on)
  for threshold in sorted(streak_thresholds):
    if streak >= threshold:
      qualifying.append((f"streak_{threshold}_days", {"streak_days": streak, "ending_on": on.isoformat()}))

  if course_milestone_every > 0:
    for milestone in range(course_milestone_every, stats.completed_courses + 1, course_milestone_every):
      qualifying.append((f"courses_completed_{milestone}", {"completed_courses": stats.completed_courses}))

  return qualifying


class AchievementEngine:
  """Evaluate the fixed rule set and grant what is newly earned.

  Uniqueness of (learner, type) is enforced by the store; concurrent evaluations may both attempt a
  grant but only one insert lands.
  """

  def __init__(self, *, progress_repo: ProgressRepository, streak_thresholds: tuple[int, ...] = (3, 7, 30), course_milestone_every: int = 5) -> None:
    self._progress_repo = progress_repo
    self._streak_thresholds = streak_thresholds
    self._course_milestone_every = course_milestone_every

  async def evaluate_and_grant(self, learner_id: str, trigger: AchievementTrigger) -> list[AchievementRecord]:
    stats = await self._progress_repo.get_learner_statistics(learner_id)
    trigger_day = trigger.occurred_at.astimezone(datetime.UTC).date()
    candidates = evaluate_rules(stats, on=trigger_day, streak_thresholds=self._streak_thresholds, course_milestone_every=self._course_milestone_every)
    if not candidates:
      return []

    # Skip known grants to avoid pointless inserts; the store still arbitrates races.
    already_granted = {record.achievement_type for record in await self._progress_repo.list_achievements(learner_id)}
    granted: list[AchievementRecord] = []
    for achievement_type, details in candidates:
      if achievement_type in already_granted:
        continue
      record = await self._progress_repo.grant_achievement(learner_id, achievement_type, {**details, "trigger": trigger.kind})
      if record is None:
        continue
      granted.append(record)
      logger.info("Achievement granted learner_id=%s type=%s trigger=%s", learner_id, achievement_type, trigger.kind)

    return granted

  async def list_achievements(self, learner_id: str) -> list[AchievementRecord]:
    return await self._progress_repo.list_achievements(learner_id)
