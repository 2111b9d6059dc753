from __future__ import annotations

import pytest

from coursegen.core.errors import StreamOverflowError
from coursegen.progress.emitter import ProgressEmitter
from coursegen.progress.events import ProgressEvent, sse_frame


def _event(percent: float, kind: str = "intra_stage_progress") -> ProgressEvent:
  return ProgressEvent(job_id="job-1", type=kind, percent=percent, stage="lessons")


@pytest.mark.anyio
async def test_subscribers_receive_events_in_publish_order() -> None:
  emitter = ProgressEmitter(capacity=8)
  first = emitter.subscribe("job-1")
  second = emitter.subscribe("job-1")

  for percent in (10.0, 20.0, 30.0):
    emitter.publish("job-1", _event(percent))
  emitter.close("job-1", _event(100.0, "complete"))

  for subscription in (first, second):
    events = [event async for event in subscription]
    assert [event.percent for event in events] == [10.0, 20.0, 30.0, 100.0]
    assert events[-1].is_terminal
  assert emitter.subscriber_count("job-1") == 0


@pytest.mark.anyio
async def test_slow_subscriber_is_dropped_after_buffered_events() -> None:
  emitter = ProgressEmitter(capacity=2)
  slow = emitter.subscribe("job-1")
  healthy = emitter.subscribe("job-1")

  emitter.publish("job-1", _event(1.0))
  emitter.publish("job-1", _event(2.0))
  # Drain the healthy subscriber so only the slow one is full.
  assert (await healthy.__anext__()).percent == 1.0
  assert (await healthy.__anext__()).percent == 2.0
  emitter.publish("job-1", _event(3.0))

  received = []
  with pytest.raises(StreamOverflowError):
    async for event in slow:
      received.append(event.percent)
  assert received == [1.0, 2.0]
  assert emitter.subscriber_count("job-1") == 1

  emitter.close("job-1", _event(100.0, "complete"))
  assert [event.percent async for event in healthy] == [3.0, 100.0]


@pytest.mark.anyio
async def test_closed_subscription_stops_receiving() -> None:
  emitter = ProgressEmitter(capacity=4)
  subscription = emitter.subscribe("job-1")
  subscription.close()
  subscription.close()

  emitter.publish("job-1", _event(5.0))

  assert emitter.subscriber_count("job-1") == 0
  assert [event async for event in subscription] == []


def test_publish_without_subscribers_is_a_no_op() -> None:
  emitter = ProgressEmitter()
  emitter.publish("nobody", _event(1.0))
  emitter.close("nobody", _event(100.0, "complete"))
  assert emitter.subscriber_count("nobody") == 0


def test_sse_frame_uses_camel_case_and_omits_defaults() -> None:
  frame = sse_frame(ProgressEvent(job_id="job-1", type="stage_start", percent=25.0))
  assert frame == 'data: {"jobId":"job-1","type":"stage_start","percent":25.0}\n\n'


def test_capacity_must_be_positive() -> None:
  with pytest.raises(ValueError):
    ProgressEmitter(capacity=0)
