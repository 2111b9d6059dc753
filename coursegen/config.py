"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class Settings:
  """Typed settings for the course generation service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  gemini_api_key: str | None
  generation_model: str
  generation_max_tokens: int
  generation_temperature: float
  generation_timeout_seconds: float
  max_stage_retries: int
  retry_base_delay_seconds: float
  retry_max_delay_seconds: float
  max_estimated_hours: float
  max_learning_objectives: int
  worker_concurrency: int
  stream_buffer_size: int
  progress_transaction_attempts: int
  streak_thresholds: tuple[int, ...]
  course_milestone_every: int


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("COURSEGEN_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("COURSEGEN_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("COURSEGEN_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_int_list(raw: str | None, default: tuple[int, ...], *, name: str) -> tuple[int, ...]:
  """Parse a comma separated list of positive integers."""
  if raw is None or raw.strip() == "":
    return default

  values: list[int] = []
  for part in raw.split(","):
    part = part.strip()
    if not part:
      continue
    value = int(part)
    if value <= 0:
      raise ValueError(f"{name} entries must be positive integers.")
    values.append(value)

  # Keep thresholds ordered so rule evaluation is deterministic.
  return tuple(sorted(set(values)))


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("COURSEGEN_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("COURSEGEN_DEBUG"))

  log_max_bytes = _positive_int("COURSEGEN_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("COURSEGEN_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("COURSEGEN_LOG_BACKUP_COUNT must be zero or a positive integer.")

  generation_temperature = float(os.getenv("COURSEGEN_GENERATION_TEMPERATURE", "0.4"))
  if not 0.0 <= generation_temperature <= 2.0:
    raise ValueError("COURSEGEN_GENERATION_TEMPERATURE must be between 0 and 2.")

  max_stage_retries = int(os.getenv("COURSEGEN_MAX_STAGE_RETRIES", "3"))
  if max_stage_retries < 0:
    raise ValueError("COURSEGEN_MAX_STAGE_RETRIES must be zero or a positive integer.")

  retry_base_delay_seconds = _positive_float("COURSEGEN_RETRY_BASE_DELAY_SECONDS", "2")
  retry_max_delay_seconds = _positive_float("COURSEGEN_RETRY_MAX_DELAY_SECONDS", "30")
  if retry_max_delay_seconds < retry_base_delay_seconds:
    raise ValueError("COURSEGEN_RETRY_MAX_DELAY_SECONDS must not be lower than the base delay.")

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("COURSEGEN_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("COURSEGEN_LOG_HTTP_4XX")),
    pg_dsn=os.getenv("COURSEGEN_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("COURSEGEN_PG_CONNECT_TIMEOUT", "5"),
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    generation_model=(os.getenv("COURSEGEN_GENERATION_MODEL") or "gemini-2.5-flash").strip(),
    generation_max_tokens=_positive_int("COURSEGEN_GENERATION_MAX_TOKENS", "8192"),
    generation_temperature=generation_temperature,
    generation_timeout_seconds=_positive_float("COURSEGEN_GENERATION_TIMEOUT_SECONDS", "60"),
    max_stage_retries=max_stage_retries,
    retry_base_delay_seconds=retry_base_delay_seconds,
    retry_max_delay_seconds=retry_max_delay_seconds,
    max_estimated_hours=_positive_float("COURSEGEN_MAX_ESTIMATED_HOURS", "200"),
    max_learning_objectives=_positive_int("COURSEGEN_MAX_LEARNING_OBJECTIVES", "20"),
    worker_concurrency=_positive_int("COURSEGEN_WORKER_CONCURRENCY", "4"),
    stream_buffer_size=_positive_int("COURSEGEN_STREAM_BUFFER_SIZE", "64"),
    progress_transaction_attempts=_positive_int("COURSEGEN_PROGRESS_TRANSACTION_ATTEMPTS", "5"),
    streak_thresholds=_parse_int_list(os.getenv("COURSEGEN_STREAK_THRESHOLDS"), (3, 7, 30), name="COURSEGEN_STREAK_THRESHOLDS"),
    course_milestone_every=_positive_int("COURSEGEN_COURSE_MILESTONE_EVERY", "5"),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so offline scripts don't require unrelated env vars.
  debug = _parse_bool(os.getenv("COURSEGEN_DEBUG"))
  pg_connect_timeout = int(os.getenv("COURSEGEN_PG_CONNECT_TIMEOUT", "5"))
  if pg_connect_timeout <= 0:
    raise ValueError("COURSEGEN_PG_CONNECT_TIMEOUT must be a positive integer.")

  pg_dsn = os.getenv("COURSEGEN_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
