"""Database initialization helper.

Creates the configured database when it is missing, then creates every coursegen table. Intended for
local/dev environments. The database name is validated before it is used in SQL because CREATE
DATABASE cannot be parameterized in PostgreSQL.
"""

import asyncio
import re
import sys

from sqlalchemy import text
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import create_async_engine

_DB_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


def _validate_database_name(db_name: str) -> str:
  if not db_name:
    raise ValueError("Target database name is empty.")
  if not _DB_NAME_PATTERN.fullmatch(db_name):
    raise ValueError("Target database name contains invalid characters (allowed: A-Z, a-z, 0-9, _).")
  return db_name


async def create_database_if_not_exists(dsn: str) -> None:
  url = make_url(dsn)
  target_db = _validate_database_name(url.database or "")
  postgres_url = url.set(database="postgres", drivername="postgresql+asyncpg")

  # CREATE DATABASE cannot run inside a transaction.
  engine = create_async_engine(postgres_url, isolation_level="AUTOCOMMIT")
  try:
    async with engine.connect() as conn:
      result = await conn.execute(text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": target_db})
      if result.scalar() == 1:
        print(f"Database '{target_db}' already exists.")
        return
      print(f"Database '{target_db}' does not exist. Creating...")
      await conn.execute(text(f'CREATE DATABASE "{target_db}"'))
      print(f"Database '{target_db}' created successfully.")
  finally:
    await engine.dispose()


async def create_tables() -> None:
  """Create all tables registered on Base.metadata; existing tables are left untouched."""
  import coursegen.schema.db_models  # noqa: F401
  from coursegen.core.database import Base, dispose_engine, get_db_engine

  engine = get_db_engine()
  if engine is None:
    raise RuntimeError("COURSEGEN_PG_DSN is not set.")
  try:
    async with engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)
    print(f"Created {len(Base.metadata.tables)} tables.")
  finally:
    await dispose_engine()


async def main() -> int:
  from coursegen.config import get_database_settings

  dsn = get_database_settings().pg_dsn
  if not dsn:
    print("Error: COURSEGEN_PG_DSN is not set.")
    return 1
  await create_database_if_not_exists(dsn)
  await create_tables()
  return 0


if __name__ == "__main__":
  sys.exit(asyncio.run(main()))
