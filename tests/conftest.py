"""Shared test configuration: environment defaults and in-memory runtime wiring."""

from __future__ import annotations

import os

# Required settings must exist before any coursegen module reads them.
os.environ.setdefault("COURSEGEN_ALLOWED_ORIGINS", "http://localhost")
os.environ.setdefault("COURSEGEN_RETRY_BASE_DELAY_SECONDS", "0.01")
os.environ.setdefault("COURSEGEN_RETRY_MAX_DELAY_SECONDS", "0.05")

import pytest  # noqa: E402

from coursegen.ai.stages import StageExecutor  # noqa: E402
from coursegen.jobs.orchestrator import GenerationOrchestrator  # noqa: E402
from coursegen.jobs.state_machine import RetryPolicy  # noqa: E402
from coursegen.progress.emitter import ProgressEmitter  # noqa: E402
from tests.fakes import InMemoryContentRepo, InMemoryJobsRepo, InMemoryProgressRepo, ScriptedGenerator  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepo:
  return InMemoryJobsRepo()


@pytest.fixture
def content_repo() -> InMemoryContentRepo:
  return InMemoryContentRepo()


@pytest.fixture
def progress_repo(content_repo: InMemoryContentRepo) -> InMemoryProgressRepo:
  return InMemoryProgressRepo(content_repo)


@pytest.fixture
def generator() -> ScriptedGenerator:
  return ScriptedGenerator()


@pytest.fixture
def emitter() -> ProgressEmitter:
  return ProgressEmitter(capacity=64)


@pytest.fixture
def sleeps() -> list[float]:
  return []


@pytest.fixture
def queued() -> list[str]:
  return []


@pytest.fixture
def orchestrator(jobs_repo, content_repo, generator, emitter, sleeps, queued) -> GenerationOrchestrator:  # noqa: ANN001
  async def _record_sleep(delay: float) -> None:
    sleeps.append(delay)

  executor = StageExecutor(generator=generator, content_repo=content_repo, jobs_repo=jobs_repo)
  retry_policy = RetryPolicy(max_retries=3, base_delay_seconds=2.0, max_delay_seconds=30.0)
  return GenerationOrchestrator(jobs_repo=jobs_repo, content_repo=content_repo, executor=executor, emitter=emitter, retry_policy=retry_policy, enqueue=queued.append, sleep=_record_sleep)
