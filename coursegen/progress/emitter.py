"""In-process fan-out of job progress events with bounded per-subscriber buffers."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from coursegen.core.errors import StreamOverflowError
from coursegen.progress.events import ProgressEvent

logger = logging.getLogger(__name__)

# Queue markers; never yielded to consumers.
_END = object()
_OVERFLOW = object()


class Subscription:
  """Async iterator over one subscriber's view of a job's events.

  The underlying queue is unbounded, capacity is enforced in `_offer` so terminal markers always fit.
  """

  def __init__(self, emitter: ProgressEmitter, job_id: str, capacity: int) -> None:
    self.job_id = job_id
    self._emitter = emitter
    self._capacity = capacity
    self._queue: asyncio.Queue[object] = asyncio.Queue()
    self._finished = False

  def _offer(self, event: ProgressEvent) -> bool:
    if self._queue.qsize() >= self._capacity:
      return False
    self._queue.put_nowait(event)
    return True

  def _end(self, marker: object, final_event: ProgressEvent | None = None) -> None:
    if final_event is not None:
      self._queue.put_nowait(final_event)
    self._queue.put_nowait(marker)

  def __aiter__(self) -> Subscription:
    return self

  async def __anext__(self) -> ProgressEvent:
    if self._finished:
      raise StopAsyncIteration
    item = await self._queue.get()
    if item is _END:
      self._finished = True
      raise StopAsyncIteration
    if item is _OVERFLOW:
      self._finished = True
      raise StreamOverflowError(f"Subscriber for job {self.job_id} fell behind by more than {self._capacity} events.")
    return item  # type: ignore[return-value]

  def close(self) -> None:
    """Unregister; safe to call more than once and from a finally block."""
    self._finished = True
    self._emitter._unsubscribe(self)


class ProgressEmitter:
  """Broadcast events per job to every current subscriber in publish order.

  `publish` and `close` never await, so a slow consumer cannot stall the producer.
  """

  def __init__(self, *, capacity: int = 64) -> None:
    if capacity <= 0:
      raise ValueError("capacity must be positive")
    self._capacity = capacity
    self._subscribers: dict[str, list[Subscription]] = defaultdict(list)

  def subscribe(self, job_id: str) -> Subscription:
    subscription = Subscription(self, job_id, self._capacity)
    self._subscribers[job_id].append(subscription)
    return subscription

  def publish(self, job_id: str, event: ProgressEvent) -> None:
    subscribers = self._subscribers.get(job_id)
    if not subscribers:
      return

    for subscription in list(subscribers):
      if subscription._offer(event):
        continue
      logger.warning("Dropping slow progress subscriber job_id=%s capacity=%d", job_id, self._capacity)
      subscription._end(_OVERFLOW)
      self._unsubscribe(subscription)

  def close(self, job_id: str, final_event: ProgressEvent) -> None:
    """Deliver the final event to every subscriber and end their streams."""
    subscribers = self._subscribers.pop(job_id, [])
    for subscription in subscribers:
      subscription._end(_END, final_event)
    logger.debug("Closed progress stream job_id=%s subscribers=%d", job_id, len(subscribers))

  def subscriber_count(self, job_id: str) -> int:
    return len(self._subscribers.get(job_id, ()))

  def _unsubscribe(self, subscription: Subscription) -> None:
    subscribers = self._subscribers.get(subscription.job_id)
    if not subscribers:
      return
    if subscription in subscribers:
      subscribers.remove(subscription)
    if not subscribers:
      del self._subscribers[subscription.job_id]
