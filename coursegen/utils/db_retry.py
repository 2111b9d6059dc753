"""Database transaction retry logic with retryable vs non-retryable error classification."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError

from coursegen.core.errors import ConcurrencyConflict, CourseGenError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DBFailureClassification:
  """Classification result for a database failure."""

  def __init__(self, *, retryable: bool, reason: str, sqlstate: str | None, category: str) -> None:
    self.retryable = retryable
    self.reason = reason
    self.sqlstate = sqlstate
    self.category = category


def _extract_sqlstate(exc: BaseException) -> str | None:
  """Extract Postgres SQLSTATE from a SQLAlchemy exception."""
  if isinstance(exc, DBAPIError) and exc.orig is not None:
    # asyncpg adapter errors expose sqlstate; psycopg exposes pgcode.
    for attribute in ("sqlstate", "pgcode"):
      value = getattr(exc.orig, attribute, None)
      if value:
        return str(value)
  return None


def classify_db_failure(exc: BaseException) -> DBFailureClassification:
  """
  Classify a failure raised inside a progress transaction.

  Retryable (transient):
    - ConcurrencyConflict raised by a repository
    - 40001: serialization failure
    - 40P01: deadlock detected
    - Connection drops/resets

  Non-retryable (permanent):
    - 23xxx: integrity violations
    - 42xxx: schema/SQL errors
    - 28xxx: permission/auth errors
    - anything else
  """
  if isinstance(exc, ConcurrencyConflict):
    return DBFailureClassification(retryable=True, reason="Concurrent writer conflict", sqlstate=None, category="serialization_conflict")

  sqlstate = _extract_sqlstate(exc)

  # Serialization failure is the expected signal under SERIALIZABLE isolation.
  if sqlstate == "40001":
    return DBFailureClassification(retryable=True, reason="Serialization failure - transaction conflict", sqlstate=sqlstate, category="serialization_conflict")

  if sqlstate == "40P01":
    return DBFailureClassification(retryable=True, reason="Deadlock detected", sqlstate=sqlstate, category="deadlock")

  if sqlstate == "55P03":
    return DBFailureClassification(retryable=False, reason="Lock not available (NOWAIT)", sqlstate=sqlstate, category="lock_timeout")

  if sqlstate == "57014":
    return DBFailureClassification(retryable=False, reason="Query canceled (timeout)", sqlstate=sqlstate, category="query_timeout")

  if sqlstate and sqlstate.startswith("23"):
    violation_types = {
      "23502": "not null violation",
      "23503": "foreign key violation",
      "23505": "unique violation",
      "23514": "check constraint violation",
    }
    specific = violation_types.get(sqlstate, "integrity constraint violation")
    return DBFailureClassification(retryable=False, reason=f"Integrity violation: {specific}", sqlstate=sqlstate, category="integrity_error")

  if sqlstate and sqlstate.startswith("42"):
    return DBFailureClassification(retryable=False, reason="Schema/SQL error (undefined table/column, syntax error)", sqlstate=sqlstate, category="schema_error")

  if sqlstate and sqlstate.startswith("28"):
    return DBFailureClassification(retryable=False, reason="Authentication/permission error", sqlstate=sqlstate, category="permission_error")

  if isinstance(exc, IntegrityError):
    return DBFailureClassification(retryable=False, reason="Integrity constraint violation (detected by exception type)", sqlstate=sqlstate, category="integrity_error")

  if isinstance(exc, OperationalError):
    error_msg = str(exc).lower()
    if any(pattern in error_msg for pattern in ["connection", "timeout", "reset", "network", "broken pipe", "lost connection"]):
      return DBFailureClassification(retryable=True, reason="Transient connection/network error", sqlstate=sqlstate, category="connectivity_error")
    return DBFailureClassification(retryable=False, reason="Operational error (unknown cause)", sqlstate=sqlstate, category="operational_error_unknown")

  return DBFailureClassification(retryable=False, reason=f"Unknown error type: {type(exc).__name__}", sqlstate=sqlstate, category="unknown_error")


def _backoff_seconds(attempt: int, *, initial_backoff_ms: int, max_backoff_ms: int, jitter: bool) -> float:
  backoff_ms = min(initial_backoff_ms * (2 ** (attempt - 1)), max_backoff_ms)
  if jitter:
    # +/-25% jitter spreads concurrent writers apart.
    jitter_range = backoff_ms * 0.25
    backoff_ms += random.uniform(-jitter_range, jitter_range)
  return backoff_ms / 1000.0


async def execute_with_retry(*, operation_name: str, func: Callable[[], Awaitable[T]], max_attempts: int = 5, initial_backoff_ms: int = 50, max_backoff_ms: int = 1000, jitter: bool = True) -> T:
  """
  Execute a transactional operation, retrying transient conflicts.

  Args:
    operation_name: Human-readable name for logging (e.g., "record_section_completion")
    func: Async callable that opens and commits its own transaction (must be idempotent)
    max_attempts: Maximum number of attempts (initial + retries)
    initial_backoff_ms: Starting backoff delay in milliseconds
    max_backoff_ms: Maximum backoff delay in milliseconds
    jitter: Add randomness to backoff to avoid thundering herd

  Returns:
    Result from func

  Raises:
    ConcurrencyConflict: retryable failures persisted through every attempt
    StorageError: non-retryable database failures
    CourseGenError: domain errors raised by func, unchanged
  """
  attempt = 0
  while True:
    attempt += 1
    try:
      result = await func()
      if attempt > 1:
        logger.info("DB operation succeeded after retry: operation=%s, attempt=%d/%d", operation_name, attempt, max_attempts)
      return result

    except (SQLAlchemyError, ConcurrencyConflict) as exc:
      classification = classify_db_failure(exc)
      logger.warning(
        "DB operation failed: operation=%s, attempt=%d/%d, category=%s, sqlstate=%s, retryable=%s, reason=%s",
        operation_name,
        attempt,
        max_attempts,
        classification.category,
        classification.sqlstate or "none",
        classification.retryable,
        classification.reason,
        exc_info=(not classification.retryable),
      )

      if not classification.retryable:
        if isinstance(exc, CourseGenError):
          raise
        raise StorageError(f"Storage operation '{operation_name}' failed: {classification.reason}", context={"category": classification.category, "sqlstate": classification.sqlstate}) from exc

      if attempt >= max_attempts:
        logger.error("DB operation failed after %d attempts: operation=%s, category=%s - giving up", max_attempts, operation_name, classification.category)
        raise ConcurrencyConflict(f"Operation '{operation_name}' kept conflicting with concurrent writers after {max_attempts} attempts.", context={"attempts": max_attempts}) from exc

      backoff = _backoff_seconds(attempt, initial_backoff_ms=initial_backoff_ms, max_backoff_ms=max_backoff_ms, jitter=jitter)
      logger.info("Retrying DB operation after backoff: operation=%s, attempt=%d/%d, backoff_ms=%.1f", operation_name, attempt, max_attempts, backoff * 1000)
      await asyncio.sleep(backoff)
