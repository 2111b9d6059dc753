"""End-to-end HTTP tests against an in-memory runtime."""

from __future__ import annotations

import asyncio
import json

import pytest
from httpx import ASGITransport, AsyncClient

from coursegen.config import get_settings
from coursegen.main import create_app
from coursegen.services.runtime import build_runtime

REQUEST = {
  "title": "Python Basics",
  "description": "Learn Python from scratch.",
  "difficulty": "beginner",
  "estimatedHours": 6,
  "learningObjectives": ["Write scripts", "Use lists"],
}


@pytest.fixture
async def runtime(jobs_repo, content_repo, progress_repo, generator):  # noqa: ANN001, ANN201
  runtime = build_runtime(get_settings(), jobs_repo=jobs_repo, content_repo=content_repo, progress_repo=progress_repo, generator=generator)
  runtime.worker_pool.start(runtime.orchestrator.run_job)
  yield runtime
  await runtime.worker_pool.stop()


@pytest.fixture
async def client(runtime):  # noqa: ANN001, ANN201
  app = create_app(runtime)
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client


def _frames(body: str) -> list[dict]:
  return [json.loads(chunk.removeprefix("data: ")) for chunk in body.split("\n\n") if chunk.startswith("data: ")]


async def _wait_for(predicate, timeout: float = 2.0) -> None:  # noqa: ANN001
  async with asyncio.timeout(timeout):
    while not predicate():
      await asyncio.sleep(0.005)


@pytest.mark.anyio
async def test_health(client: AsyncClient) -> None:
  response = await client.get("/health")
  assert response.status_code == 200
  assert response.json()["status"] == "ok"


@pytest.mark.anyio
async def test_generation_job_runs_to_completion(client: AsyncClient, runtime) -> None:  # noqa: ANN001
  response = await client.post("/v1/generation/jobs", json=REQUEST)
  assert response.status_code == 202
  job_id = response.json()["jobId"]

  await runtime.worker_pool.join()

  status = (await client.get(f"/v1/generation/jobs/{job_id}")).json()
  assert status["status"] == "completed"
  assert status["courseId"]
  assert status["cancelRequested"] is False

  stages = (await client.get(f"/v1/generation/jobs/{job_id}/stages")).json()
  assert [item["stage"] for item in stages["stages"]] == ["outline", "modules", "lessons", "sections", "finalize"]
  assert all(item["status"] == "succeeded" for item in stages["stages"])


@pytest.mark.anyio
async def test_event_stream_delivers_live_progress(client: AsyncClient, runtime, generator) -> None:  # noqa: ANN001
  generator.gate = asyncio.Event()
  job_id = (await client.post("/v1/generation/jobs", json=REQUEST)).json()["jobId"]

  stream = asyncio.create_task(client.get(f"/v1/generation/jobs/{job_id}/events"))
  await _wait_for(lambda: runtime.emitter.subscriber_count(job_id) == 1)
  generator.gate.set()
  response = await stream

  assert response.status_code == 200
  assert response.headers["content-type"].startswith("text/event-stream")
  frames = _frames(response.text)
  # The outline stage_start may be published before the subscription exists.
  completed_stages = [frame["stage"] for frame in frames if frame["type"] == "stage_complete"]
  assert completed_stages == ["outline", "modules", "lessons", "sections", "finalize"]
  assert frames[-1]["type"] == "complete"
  assert all(frame["jobId"] == job_id for frame in frames)
  assert [frame["percent"] for frame in frames] == sorted(frame["percent"] for frame in frames)


@pytest.mark.anyio
async def test_event_stream_for_finished_job_replays_final_event(client: AsyncClient, runtime) -> None:  # noqa: ANN001
  job_id = (await client.post("/v1/generation/jobs", json=REQUEST)).json()["jobId"]
  await runtime.worker_pool.join()

  frames = _frames((await client.get(f"/v1/generation/jobs/{job_id}/events")).text)

  assert len(frames) == 1
  assert frames[0]["type"] == "complete"
  assert frames[0]["percent"] == 100.0
  assert runtime.emitter.subscriber_count(job_id) == 0


@pytest.mark.anyio
async def test_cancel_running_job(client: AsyncClient, runtime, generator) -> None:  # noqa: ANN001
  generator.gate = asyncio.Event()
  job_id = (await client.post("/v1/generation/jobs", json=REQUEST)).json()["jobId"]
  await _wait_for(lambda: generator.calls["outline"] == 1)

  response = await client.post(f"/v1/generation/jobs/{job_id}/cancel")
  assert response.status_code == 200
  assert response.json()["cancelRequested"] is True

  generator.gate.set()
  await runtime.worker_pool.join()

  status = (await client.get(f"/v1/generation/jobs/{job_id}")).json()
  assert status["status"] == "cancelled"
  assert status["lastError"]["code"] == "job_cancelled"
  assert generator.calls["modules"] == 0


@pytest.mark.anyio
async def test_resume_of_completed_job_is_rejected(client: AsyncClient, runtime) -> None:  # noqa: ANN001
  job_id = (await client.post("/v1/generation/jobs", json=REQUEST)).json()["jobId"]
  await runtime.worker_pool.join()

  response = await client.post(f"/v1/generation/jobs/{job_id}/resume")

  assert response.status_code == 422
  assert response.json()["code"] == "job_not_resumable"


@pytest.mark.anyio
@pytest.mark.parametrize(
  "changes",
  [{"estimatedHours": 0}, {"estimatedHours": 500}, {"difficulty": "expert"}, {"title": "   "}, {"learningObjectives": []}],
)
async def test_invalid_generation_requests_return_422(client: AsyncClient, jobs_repo, changes: dict) -> None:  # noqa: ANN001
  response = await client.post("/v1/generation/jobs", json={**REQUEST, **changes})

  assert response.status_code == 422
  assert response.json()["code"] == "validation_error"
  assert jobs_repo.jobs == {}


@pytest.mark.anyio
async def test_unknown_job_returns_404(client: AsyncClient) -> None:
  for path in ("/v1/generation/jobs/nope", "/v1/generation/jobs/nope/stages", "/v1/generation/jobs/nope/events"):
    response = await client.get(path)
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"
