from __future__ import annotations

import pytest

from coursegen.jobs.worker import GenerationWorkerPool


@pytest.mark.anyio
async def test_pool_runs_queued_jobs_and_survives_crashes() -> None:
  seen: list[str] = []

  async def runner(job_id: str) -> None:
    seen.append(job_id)
    if job_id == "boom":
      raise RuntimeError("runner exploded")

  pool = GenerationWorkerPool(concurrency=2)
  pool.start(runner)
  for job_id in ("a", "boom", "b"):
    pool.submit(job_id)
  await pool.join()
  await pool.stop()

  assert sorted(seen) == ["a", "b", "boom"]
  assert not pool.running


@pytest.mark.anyio
async def test_worker_without_runner_refuses_to_start() -> None:
  pool = GenerationWorkerPool(concurrency=1)
  with pytest.raises(RuntimeError, match="without a job runner"):
    await pool._work(0)


def test_concurrency_must_be_positive() -> None:
  with pytest.raises(ValueError):
    GenerationWorkerPool(concurrency=0)
