"""Identifier utilities."""

from __future__ import annotations

import uuid


def generate_job_id() -> str:
  """Return a new generation job identifier."""
  return str(uuid.uuid4())


def generate_content_id() -> str:
  """Return a new identifier for a course, module, lesson or section."""
  return str(uuid.uuid4())
