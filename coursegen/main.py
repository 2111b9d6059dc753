from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from coursegen.api.routes import generation, progress
from coursegen.config import get_settings
from coursegen.core.errors import CourseGenError
from coursegen.core.exceptions import domain_exception_handler, global_exception_handler, http_exception_handler, request_validation_exception_handler
from coursegen.core.lifespan import lifespan
from coursegen.core.middleware import RequestLoggingMiddleware
from coursegen.services.runtime import Runtime

VERSION = "0.1.0"


def create_app(runtime: Runtime | None = None) -> FastAPI:
  """Build the application; a pre-built runtime skips the Postgres/Gemini wiring."""
  settings = get_settings()
  app = FastAPI(title="coursegen", version=VERSION, lifespan=lifespan, docs_url=None, redoc_url=None)
  if runtime is not None:
    app.state.runtime = runtime

  app.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization"])

  app.add_exception_handler(Exception, global_exception_handler)
  app.add_exception_handler(HTTPException, http_exception_handler)
  app.add_exception_handler(CourseGenError, domain_exception_handler)
  app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

  app.add_middleware(RequestLoggingMiddleware)

  @app.get("/health", include_in_schema=False)
  async def health_check() -> dict[str, str]:
    """Return a simple health status."""
    return {"status": "ok", "version": VERSION}

  app.include_router(generation.router, prefix="/v1/generation/jobs", tags=["generation"])
  app.include_router(progress.router, prefix="/v1/progress", tags=["progress"])
  return app


app = create_app()
