"""Learner progress use cases: record completions and grant what they earn."""

from __future__ import annotations

from dataclasses import dataclass, field

from coursegen.progress.achievements import AchievementEngine, AchievementTrigger
from coursegen.progress.aggregator import CourseProgressSnapshot, ProgressAggregator, ProgressUpdate
from coursegen.storage.progress_repo import AchievementRecord

SECTION_COMPLETED = "section_completed"


@dataclass(frozen=True)
class SectionCompletionResult:
  update: ProgressUpdate
  granted: list[AchievementRecord] = field(default_factory=list)


class ProgressService:
  def __init__(self, *, aggregator: ProgressAggregator, achievements: AchievementEngine) -> None:
    self._aggregator = aggregator
    self._achievements = achievements

  async def record_section_completion(self, *, learner_id: str, lesson_id: str, section_id: str, time_spent_seconds: int) -> SectionCompletionResult:
    """Aggregate the completion, then evaluate achievements against the committed state."""
    update = await self._aggregator.record_section_completion(learner_id, lesson_id, section_id, time_spent_seconds)
    # Streak rules depend on activity, not on thresholds, so every completion is evaluated.
    kind = update.newly_crossed_thresholds[-1] if update.newly_crossed_thresholds else SECTION_COMPLETED
    trigger = AchievementTrigger(kind=kind, occurred_at=update.occurred_at, course_id=update.course_id, lesson_id=update.lesson_id)
    granted = await self._achievements.evaluate_and_grant(learner_id, trigger)
    return SectionCompletionResult(update=update, granted=granted)

  async def get_course_progress(self, *, learner_id: str, course_id: str) -> CourseProgressSnapshot:
    return await self._aggregator.get_course_progress(learner_id, course_id)

  async def list_achievements(self, *, learner_id: str) -> list[AchievementRecord]:
    return await self._achievements.list_achievements(learner_id)
