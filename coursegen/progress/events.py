"""Progress event payloads pushed to stream subscribers."""

from __future__ import annotations

from typing import Any, Literal

import msgspec

EventType = Literal["stage_start", "intra_stage_progress", "stage_complete", "error", "complete"]
TERMINAL_EVENT_TYPES: frozenset[str] = frozenset({"error", "complete"})


class ProgressEvent(msgspec.Struct, frozen=True, rename="camel", omit_defaults=True):
  """One event in a job's progress stream; serialized with camelCase keys."""

  job_id: str
  type: EventType
  percent: float
  stage: str | None = None
  payload: dict[str, Any] | None = None

  @property
  def is_terminal(self) -> bool:
    return self.type in TERMINAL_EVENT_TYPES


def encode_event(event: ProgressEvent) -> bytes:
  return msgspec.json.encode(event)


def sse_frame(event: ProgressEvent) -> str:
  """Format an event as one Server-Sent Events frame."""
  return f"data: {encode_event(event).decode('utf-8')}\n\n"
