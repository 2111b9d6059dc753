"""Domain models for asynchronous course generation jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

JobStatus = Literal["pending", "running", "stage_failed", "completed", "failed", "cancelled"]
Stage = Literal["outline", "modules", "lessons", "sections", "finalize"]
StageResultStatus = Literal["succeeded", "failed"]
Difficulty = Literal["beginner", "intermediate", "advanced"]

STAGE_ORDER: tuple[Stage, ...] = ("outline", "modules", "lessons", "sections", "finalize")
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})
DIFFICULTIES: tuple[Difficulty, ...] = ("beginner", "intermediate", "advanced")


def stage_ordinal(stage: str) -> int:
  """Return the 1-based position of a stage in the pipeline."""
  try:
    return STAGE_ORDER.index(stage) + 1  # type: ignore[arg-type]
  except ValueError as exc:
    raise ValueError(f"Unknown stage '{stage}'.") from exc


def next_stage(stage: str) -> Stage | None:
  """Return the stage after the given one, or None after finalize."""
  ordinal = stage_ordinal(stage)
  if ordinal >= len(STAGE_ORDER):
    return None
  return STAGE_ORDER[ordinal]


def now_iso() -> str:
  return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class GenerationParams:
  """Validated request parameters for one course generation."""

  title: str
  description: str
  difficulty: Difficulty
  estimated_hours: float
  learning_objectives: list[str] = field(default_factory=list)
  requirements: str | None = None

  def to_dict(self) -> dict[str, Any]:
    return {
      "title": self.title,
      "description": self.description,
      "difficulty": self.difficulty,
      "estimated_hours": self.estimated_hours,
      "learning_objectives": list(self.learning_objectives),
      "requirements": self.requirements,
    }

  @classmethod
  def from_dict(cls, payload: dict[str, Any]) -> GenerationParams:
    return cls(
      title=str(payload["title"]),
      description=str(payload["description"]),
      difficulty=payload["difficulty"],
      estimated_hours=float(payload["estimated_hours"]),
      learning_objectives=[str(item) for item in payload.get("learning_objectives") or []],
      requirements=payload.get("requirements"),
    )


@dataclass
class JobRecord:
  """Represents a background course generation job."""

  job_id: str
  params: GenerationParams
  status: JobStatus
  stage: Stage
  created_at: str
  updated_at: str
  attempt: int = 0
  cancel_requested: bool = False
  course_id: str | None = None
  last_error: dict[str, Any] | None = None
  completed_at: str | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class StageResultRecord:
  """Durable outcome of one stage of one job."""

  job_id: str
  stage: Stage
  ordinal: int
  status: StageResultStatus
  raw_payload: str | None
  parsed_payload: dict[str, Any] | None
  error: dict[str, Any] | None
  created_at: str
