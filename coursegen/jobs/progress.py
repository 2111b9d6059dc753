"""Job progress percent planning across pipeline stages."""

from __future__ import annotations

from coursegen.jobs.models import STAGE_ORDER, stage_ordinal

# Share of the overall job each stage accounts for; sums to 100.
STAGE_WEIGHTS: dict[str, float] = {"outline": 10.0, "modules": 15.0, "lessons": 30.0, "sections": 35.0, "finalize": 10.0}


def _completed_before(stage: str) -> float:
  ordinal = stage_ordinal(stage)
  return sum(STAGE_WEIGHTS[name] for name in STAGE_ORDER[: ordinal - 1])


def stage_start_percent(stage: str) -> float:
  """Overall percent at the moment a stage begins."""
  return round(_completed_before(stage), 2)


def stage_complete_percent(stage: str) -> float:
  """Overall percent once a stage has succeeded."""
  return round(min(_completed_before(stage) + STAGE_WEIGHTS[stage], 100.0), 2)


def intra_stage_percent(stage: str, *, completed: int, total: int) -> float:
  """Overall percent after `completed` of `total` items of a stage are done."""
  if total <= 0:
    return stage_start_percent(stage)

  fraction = min(max(completed, 0), total) / total
  return round(_completed_before(stage) + STAGE_WEIGHTS[stage] * fraction, 2)
