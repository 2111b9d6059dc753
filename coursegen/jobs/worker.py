"""In-process worker pool that runs generation jobs concurrently."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

JobRunner = Callable[[str], Awaitable[Any]]


class GenerationWorkerPool:
  """Consume job ids from a queue with a fixed number of workers.

  Stages of one job run sequentially inside a single worker; distinct jobs run in parallel.
  """

  def __init__(self, *, concurrency: int = 4) -> None:
    if concurrency <= 0:
      raise ValueError("concurrency must be positive")
    self._concurrency = concurrency
    self._queue: asyncio.Queue[str] = asyncio.Queue()
    self._workers: list[asyncio.Task[None]] = []
    self._runner: JobRunner | None = None
    self._logger = logging.getLogger(__name__)

  @property
  def running(self) -> bool:
    return bool(self._workers)

  def submit(self, job_id: str) -> None:
    """Queue a job id; never blocks."""
    self._queue.put_nowait(job_id)
    self._logger.debug("Job queued job_id=%s depth=%d", job_id, self._queue.qsize())

  def start(self, runner: JobRunner) -> None:
    if self._workers:
      return
    self._runner = runner
    self._workers = [asyncio.create_task(self._work(index), name=f"generation-worker-{index}") for index in range(self._concurrency)]
    self._logger.info("Generation worker pool started concurrency=%d", self._concurrency)

  async def join(self) -> None:
    """Wait until every queued job has been processed."""
    await self._queue.join()

  async def stop(self) -> None:
    """Cancel workers; jobs in flight stay non-terminal and are resumed on next start."""
    workers, self._workers = self._workers, []
    for worker in workers:
      worker.cancel()
    await asyncio.gather(*workers, return_exceptions=True)
    self._logger.info("Generation worker pool stopped")

  async def _work(self, index: int) -> None:
    if self._runner is None:
      raise RuntimeError("Worker pool started without a job runner.")
    while True:
      job_id = await self._queue.get()
      try:
        await self._runner(job_id)
      except Exception:
        self._logger.error("Worker %d: job crashed job_id=%s", index, job_id, exc_info=True)
      finally:
        self._queue.task_done()
