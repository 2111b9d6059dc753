import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from coursegen.core.database import dispose_engine
from coursegen.core.logging import _initialize_logging
from coursegen.services.runtime import build_runtime, start_runtime, stop_runtime


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Initialize logging, build or reuse the runtime, and drain workers on shutdown."""
  from coursegen.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("coursegen.core.lifespan")
  _initialize_logging(settings)

  runtime = getattr(app.state, "runtime", None)
  if runtime is None:
    logger.info("Building runtime; DSN=%s model=%s", _redact_dsn(settings.pg_dsn), settings.generation_model)
    runtime = build_runtime(settings)
    app.state.runtime = runtime

  await start_runtime(runtime)
  logger.info("Startup complete workers=%d", settings.worker_concurrency)

  try:
    yield
  finally:
    await stop_runtime(runtime)
    await dispose_engine()
    logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
