from coursegen.config import Settings
from coursegen.storage.content_repo import ContentRepository
from coursegen.storage.jobs_repo import JobsRepository
from coursegen.storage.postgres_content_repo import PostgresContentRepository
from coursegen.storage.postgres_jobs_repo import PostgresJobsRepository
from coursegen.storage.postgres_progress_repo import PostgresProgressRepository
from coursegen.storage.progress_repo import ProgressRepository


def _require_dsn(settings: Settings) -> None:
  # Enforce Postgres-backed storage for every aggregate.
  if not settings.pg_dsn:
    raise ValueError("COURSEGEN_PG_DSN must be set to enable Postgres persistence.")


def _get_jobs_repo(settings: Settings) -> JobsRepository:
  """Return the active jobs repository."""
  _require_dsn(settings)
  return PostgresJobsRepository()


def _get_content_repo(settings: Settings) -> ContentRepository:
  """Return the active content repository."""
  _require_dsn(settings)
  return PostgresContentRepository()


def _get_progress_repo(settings: Settings) -> ProgressRepository:
  """Return the active progress repository."""
  _require_dsn(settings)
  return PostgresProgressRepository()
