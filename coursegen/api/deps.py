"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from coursegen.services.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
  """Return the runtime the lifespan attached to the application."""
  runtime = getattr(request.app.state, "runtime", None)
  if runtime is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting up.")
  return runtime
