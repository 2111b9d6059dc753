"""Import all SQLAlchemy ORM models so Base.metadata sees a complete graph."""

from __future__ import annotations

# Import ORM modules for side effects so models register with Base.metadata.
import coursegen.schema.content  # noqa: F401
import coursegen.schema.jobs  # noqa: F401
import coursegen.schema.progress  # noqa: F401
