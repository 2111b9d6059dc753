"""Wire repositories, the pipeline and the progress engine into one runtime."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from coursegen.ai.providers.base import ContentGenerator
from coursegen.ai.providers.gemini import GeminiContentGenerator
from coursegen.ai.stages import GenerationOptions, StageExecutor
from coursegen.config import Settings
from coursegen.jobs.orchestrator import GenerationOrchestrator, RequestLimits
from coursegen.jobs.state_machine import RetryPolicy
from coursegen.jobs.worker import GenerationWorkerPool
from coursegen.progress.achievements import AchievementEngine
from coursegen.progress.aggregator import ProgressAggregator
from coursegen.progress.emitter import ProgressEmitter
from coursegen.services.progress import ProgressService
from coursegen.storage.content_repo import ContentRepository
from coursegen.storage.factory import _get_content_repo, _get_jobs_repo, _get_progress_repo
from coursegen.storage.jobs_repo import JobsRepository
from coursegen.storage.progress_repo import ProgressRepository

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
  settings: Settings
  jobs_repo: JobsRepository
  content_repo: ContentRepository
  progress_repo: ProgressRepository
  emitter: ProgressEmitter
  orchestrator: GenerationOrchestrator
  worker_pool: GenerationWorkerPool
  progress: ProgressService


def build_runtime(
  settings: Settings,
  *,
  jobs_repo: JobsRepository | None = None,
  content_repo: ContentRepository | None = None,
  progress_repo: ProgressRepository | None = None,
  generator: ContentGenerator | None = None,
) -> Runtime:
  """Build the object graph; injected collaborators replace the Postgres/Gemini defaults."""
  jobs_repo = jobs_repo or _get_jobs_repo(settings)
  content_repo = content_repo or _get_content_repo(settings)
  progress_repo = progress_repo or _get_progress_repo(settings)
  generator = generator or GeminiContentGenerator(settings.generation_model, settings.gemini_api_key)

  emitter = ProgressEmitter(capacity=settings.stream_buffer_size)
  executor = StageExecutor(
    generator=generator,
    content_repo=content_repo,
    jobs_repo=jobs_repo,
    options=GenerationOptions(max_tokens=settings.generation_max_tokens, temperature=settings.generation_temperature, timeout_seconds=settings.generation_timeout_seconds),
  )
  worker_pool = GenerationWorkerPool(concurrency=settings.worker_concurrency)
  orchestrator = GenerationOrchestrator(
    jobs_repo=jobs_repo,
    content_repo=content_repo,
    executor=executor,
    emitter=emitter,
    retry_policy=RetryPolicy(max_retries=settings.max_stage_retries, base_delay_seconds=settings.retry_base_delay_seconds, max_delay_seconds=settings.retry_max_delay_seconds),
    limits=RequestLimits(max_estimated_hours=settings.max_estimated_hours, max_learning_objectives=settings.max_learning_objectives),
    enqueue=worker_pool.submit,
  )
  aggregator = ProgressAggregator(progress_repo=progress_repo, content_repo=content_repo, max_attempts=settings.progress_transaction_attempts)
  achievements = AchievementEngine(progress_repo=progress_repo, streak_thresholds=settings.streak_thresholds, course_milestone_every=settings.course_milestone_every)

  return Runtime(
    settings=settings,
    jobs_repo=jobs_repo,
    content_repo=content_repo,
    progress_repo=progress_repo,
    emitter=emitter,
    orchestrator=orchestrator,
    worker_pool=worker_pool,
    progress=ProgressService(aggregator=aggregator, achievements=achievements),
  )


async def start_runtime(runtime: Runtime) -> None:
  """Start workers and pick up jobs a previous process left unfinished."""
  runtime.worker_pool.start(runtime.orchestrator.run_job)
  await runtime.orchestrator.resume_incomplete_jobs()


async def stop_runtime(runtime: Runtime) -> None:
  await runtime.worker_pool.stop()
