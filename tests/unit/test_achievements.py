from __future__ import annotations

import datetime

import pytest

from coursegen.progress.achievements import AchievementEngine, AchievementTrigger, evaluate_rules, streak_length
from coursegen.storage.progress_repo import LearnerStatistics

TODAY = datetime.date(2026, 5, 10)


def _days(*offsets: int) -> frozenset[datetime.date]:
  return frozenset(TODAY - datetime.timedelta(days=offset) for offset in offsets)


def _trigger(kind: str = "lesson_completed") -> AchievementTrigger:
  return AchievementTrigger(kind=kind, occurred_at=datetime.datetime.combine(TODAY, datetime.time(9, 30), tzinfo=datetime.UTC))


def test_streak_counts_consecutive_days_ending_today() -> None:
  assert streak_length(_days(0, 1, 2, 4), TODAY) == 3
  assert streak_length(_days(1, 2, 3), TODAY) == 0
  assert streak_length(frozenset(), TODAY) == 0


def test_rules_cover_firsts_streaks_and_milestones() -> None:
  stats = LearnerStatistics(completed_lessons=4, completed_courses=10, activity_days=_days(*range(8)))

  types = [name for name, _ in evaluate_rules(stats, on=TODAY, streak_thresholds=(30, 3, 7), course_milestone_every=5)]

  assert types == ["first_lesson_completed", "first_course_completed", "streak_3_days", "streak_7_days", "courses_completed_5", "courses_completed_10"]


def test_no_activity_qualifies_for_nothing() -> None:
  stats = LearnerStatistics(completed_lessons=0, completed_courses=0, activity_days=frozenset())
  assert evaluate_rules(stats, on=TODAY, streak_thresholds=(3,), course_milestone_every=5) == []


@pytest.mark.anyio
async def test_granting_is_idempotent(progress_repo) -> None:  # noqa: ANN001
  engine = AchievementEngine(progress_repo=progress_repo, streak_thresholds=(3,))
  progress_repo.add_activity("learner-1", *_days(0, 1, 2))

  first = await engine.evaluate_and_grant("learner-1", _trigger())
  second = await engine.evaluate_and_grant("learner-1", _trigger())

  assert [record.achievement_type for record in first] == ["streak_3_days"]
  assert first[0].details["trigger"] == "lesson_completed"
  assert second == []
  assert len(await engine.list_achievements("learner-1")) == 1


@pytest.mark.anyio
async def test_store_arbitrates_races(progress_repo) -> None:  # noqa: ANN001
  engine = AchievementEngine(progress_repo=progress_repo, streak_thresholds=(1,))
  progress_repo.add_activity("learner-1", TODAY)
  # Another evaluation inserted the row between our read and our write.
  await progress_repo.grant_achievement("learner-1", "streak_1_days", {})
  original_list = progress_repo.list_achievements

  async def _stale_list(learner_id: str) -> list:
    return []

  progress_repo.list_achievements = _stale_list
  granted = await engine.evaluate_and_grant("learner-1", _trigger())
  progress_repo.list_achievements = original_list

  assert granted == []
  assert len(await progress_repo.list_achievements("learner-1")) == 1
