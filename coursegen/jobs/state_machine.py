"""Pure job state machine for the generation pipeline.

`transition` maps a job state and an observed event onto the next state plus the side effects the
orchestrator must apply, in order. It performs no I/O, so every path can be exercised directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from coursegen.jobs.models import TERMINAL_STATUSES, JobStatus, Stage, next_stage

FailureKind = Literal["transient", "fatal"]


class InvalidTransitionError(Exception):
  """Raised when an event cannot apply to the current state."""


@dataclass(frozen=True)
class RetryPolicy:
  """Retry budget and exponential backoff bounds for transient stage failures."""

  max_retries: int = 3
  base_delay_seconds: float = 2.0
  max_delay_seconds: float = 30.0

  def delay_for(self, retry_number: int) -> float:
    """Nominal delay before the given 1-based retry, before jitter."""
    return min(self.base_delay_seconds * (2 ** (retry_number - 1)), self.max_delay_seconds)


@dataclass(frozen=True)
class JobState:
  status: JobStatus
  stage: Stage
  attempt: int = 0
  last_error: dict[str, Any] | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES


# Events


@dataclass(frozen=True)
class Started:
  pass


@dataclass(frozen=True)
class StageStarted:
  stage: Stage


@dataclass(frozen=True)
class StageSucceeded:
  stage: Stage
  payload: dict[str, Any] | None = None


@dataclass(frozen=True)
class StageFailed:
  stage: Stage
  kind: FailureKind
  code: str
  message: str


@dataclass(frozen=True)
class RetryStarted:
  pass


@dataclass(frozen=True)
class CancelObserved:
  pass


@dataclass(frozen=True)
class StorageFailed:
  message: str


Event = Started | StageStarted | StageSucceeded | StageFailed | RetryStarted | CancelObserved | StorageFailed


# Effects


@dataclass(frozen=True)
class PersistJob:
  pass


@dataclass(frozen=True)
class EmitStageStart:
  stage: Stage


@dataclass(frozen=True)
class EmitStageComplete:
  stage: Stage
  payload: dict[str, Any] | None = None


@dataclass(frozen=True)
class EmitComplete:
  pass


@dataclass(frozen=True)
class EmitError:
  code: str
  message: str
  stage: Stage | None = None


@dataclass(frozen=True)
class ScheduleRetry:
  delay_seconds: float
  retry_number: int


@dataclass(frozen=True)
class CloseStream:
  pass


Effect = PersistJob | EmitStageStart | EmitStageComplete | EmitComplete | EmitError | ScheduleRetry | CloseStream


@dataclass(frozen=True)
class Transition:
  state: JobState
  effects: tuple[Effect, ...] = field(default_factory=tuple)


CANCELLED_MESSAGE = "Generation was cancelled."


def _fail(state: JobState, *, code: str, message: str, stage: Stage | None) -> Transition:
  error = {"code": code, "message": message}
  failed = JobState(status="failed", stage=state.stage, attempt=state.attempt, last_error=error)
  return Transition(failed, (PersistJob(), EmitError(code=code, message=message, stage=stage), CloseStream()))


def _require_stage(state: JobState, stage: Stage, event: Event) -> None:
  if stage != state.stage:
    raise InvalidTransitionError(f"{type(event).__name__} for stage '{stage}' while job is at stage '{state.stage}'.")


def transition(state: JobState, event: Event, policy: RetryPolicy | None = None) -> Transition:
  """Apply one event to a job state.

  Terminal states absorb every event without effects.
  """
  policy = policy or RetryPolicy()
  if state.is_terminal:
    return Transition(state)

  match event:
    case Started():
      if state.status == "running":
        return Transition(state)
      return Transition(JobState(status="running", stage=state.stage, attempt=state.attempt, last_error=state.last_error), (PersistJob(),))

    case StageStarted(stage=stage):
      _require_stage(state, stage, event)
      return Transition(state, (EmitStageStart(stage),))

    case StageSucceeded(stage=stage, payload=payload):
      _require_stage(state, stage, event)
      following = next_stage(stage)
      if following is None:
        completed = JobState(status="completed", stage=stage, attempt=0, last_error=None)
        return Transition(completed, (PersistJob(), EmitStageComplete(stage, payload), EmitComplete(), CloseStream()))
      advanced = JobState(status="running", stage=following, attempt=0, last_error=None)
      return Transition(advanced, (PersistJob(), EmitStageComplete(stage, payload)))

    case StageFailed(stage=stage, kind=kind, code=code, message=message):
      _require_stage(state, stage, event)
      if kind == "fatal":
        return _fail(state, code=code, message=message, stage=stage)
      if state.attempt >= policy.max_retries:
        return _fail(state, code=code, message=message, stage=stage)
      retry_number = state.attempt + 1
      waiting = JobState(status="stage_failed", stage=stage, attempt=retry_number, last_error={"code": code, "message": message})
      return Transition(waiting, (PersistJob(), ScheduleRetry(delay_seconds=policy.delay_for(retry_number), retry_number=retry_number)))

    case RetryStarted():
      if state.status != "stage_failed":
        raise InvalidTransitionError(f"RetryStarted while job is '{state.status}'.")
      return Transition(JobState(status="running", stage=state.stage, attempt=state.attempt, last_error=state.last_error), (PersistJob(),))

    case CancelObserved():
      cancelled = JobState(status="cancelled", stage=state.stage, attempt=state.attempt, last_error={"code": "job_cancelled", "message": CANCELLED_MESSAGE})
      return Transition(cancelled, (PersistJob(), EmitError(code="job_cancelled", message=CANCELLED_MESSAGE, stage=state.stage), CloseStream()))

    case StorageFailed(message=message):
      return _fail(state, code="storage_error", message=message, stage=state.stage)

  raise InvalidTransitionError(f"Unsupported event {event!r}.")
