from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from coursegen.config import get_settings
from coursegen.main import create_app
from coursegen.services.runtime import build_runtime


@pytest.fixture
async def client(jobs_repo, content_repo, progress_repo, generator):  # noqa: ANN001, ANN201
  content_repo.seed_course(lessons={"lesson-1": ["s-1", "s-2"], "lesson-2": ["s-3"]})
  runtime = build_runtime(get_settings(), jobs_repo=jobs_repo, content_repo=content_repo, progress_repo=progress_repo, generator=generator)
  async with AsyncClient(transport=ASGITransport(app=create_app(runtime)), base_url="http://test") as client:
    yield client


def _completion(section_id: str, lesson_id: str = "lesson-1", **extra: object) -> dict:
  return {"learnerId": "learner-1", "lessonId": lesson_id, "sectionId": section_id, "timeSpentSeconds": 60, **extra}


@pytest.mark.anyio
async def test_section_completion_rolls_up(client: AsyncClient) -> None:
  response = await client.post("/v1/progress/sections", json=_completion("s-1"))

  assert response.status_code == 200
  body = response.json()
  assert body["lessonPercent"] == 50
  assert body["coursePercent"] == 25
  assert body["lessonCompleted"] is False
  assert body["newlyCrossedThresholds"] == []
  assert body["grantedAchievements"] == []


@pytest.mark.anyio
async def test_completing_a_lesson_grants_an_achievement_once(client: AsyncClient) -> None:
  await client.post("/v1/progress/sections", json=_completion("s-1"))
  body = (await client.post("/v1/progress/sections", json=_completion("s-2"))).json()

  assert body["lessonCompleted"] is True
  assert body["newlyCrossedThresholds"] == ["lesson_completed"]
  assert [item["achievementType"] for item in body["grantedAchievements"]] == ["first_lesson_completed"]

  repeat = (await client.post("/v1/progress/sections", json=_completion("s-2"))).json()
  assert repeat["newlyCrossedThresholds"] == []
  assert repeat["grantedAchievements"] == []

  achievements = (await client.get("/v1/progress/learners/learner-1/achievements")).json()
  assert [item["achievementType"] for item in achievements] == ["first_lesson_completed"]


@pytest.mark.anyio
async def test_course_progress_snapshot(client: AsyncClient) -> None:
  for section_id, lesson_id in (("s-1", "lesson-1"), ("s-2", "lesson-1"), ("s-3", "lesson-2")):
    await client.post("/v1/progress/sections", json=_completion(section_id, lesson_id))

  body = (await client.get("/v1/progress/learners/learner-1/courses/course-1")).json()

  assert body["percent"] == 100
  assert body["completed"] is True
  assert body["timeSpentSeconds"] == 180
  assert sorted(item["lessonId"] for item in body["lessons"]) == ["lesson-1", "lesson-2"]


@pytest.mark.anyio
@pytest.mark.parametrize(
  ("payload", "status_code", "code"),
  [
    (b"{not json", 422, "invalid_json"),
    (b'{"learnerId": "learner-1"}', 422, "invalid_payload"),
    (b'{"learnerId": "l", "lessonId": "lesson-1", "sectionId": "s-1", "timeSpentSeconds": "lots"}', 422, "invalid_payload"),
    (b'{"learnerId": "l", "lessonId": "lesson-1", "sectionId": "s-9", "timeSpentSeconds": 1}', 404, "not_found"),
    (b'{"learnerId": "l", "lessonId": "lesson-2", "sectionId": "s-1", "timeSpentSeconds": 1}', 422, "validation_error"),
  ],
)
async def test_bad_completion_requests(client: AsyncClient, payload: bytes, status_code: int, code: str) -> None:
  response = await client.post("/v1/progress/sections", content=payload, headers={"content-type": "application/json"})

  assert response.status_code == status_code
  assert response.json()["code"] == code


@pytest.mark.anyio
async def test_unknown_course_returns_404(client: AsyncClient) -> None:
  response = await client.get("/v1/progress/learners/learner-1/courses/missing")
  assert response.status_code == 404
