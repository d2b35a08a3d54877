"""Alembic environment for the Drive Mirror schema.

The database URL comes from application settings (``DRIVEMIRROR_DATABASE_URL``
or the SQLite file under ``DRIVEMIRROR_CONFIG_PATH``) and can be overridden
with ``alembic -x url=...``.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig
from typing import Any

from sqlalchemy import pool
from sqlalchemy.engine import Connection

from alembic import context

import drivemirror.db.models  # noqa: F401  (registers every table on Base.metadata)
from drivemirror.db.base import Base
from drivemirror.db.session import build_engine, get_database_url

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    return context.get_x_argument(as_dictionary=True).get("url") or get_database_url()


def _configure_and_run(**options: Any) -> None:
    # Batch mode lets SQLite emulate ALTER TABLE
    context.configure(target_metadata=target_metadata, render_as_batch=True, **options)
    with context.begin_transaction():
        context.run_migrations()


def _run_with_connection(connection: Connection) -> None:
    _configure_and_run(connection=connection)


async def _run_online() -> None:
    engine = build_engine(_database_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_with_connection)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    _configure_and_run(
        url=_database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
else:
    asyncio.run(_run_online())
