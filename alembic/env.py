"""
Alembic environment configuration for ShelfSync
Handles SQLite database migrations with async support
"""

import asyncio
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context

from shelfsync.core.models import Base
from shelfsync.config.config_loader import load_config

# Alembic Config object
config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_database_url() -> str:
    """Async database URL from ShelfSync configuration"""
    return load_config().get('database', {}).get('url', 'sqlite+aiosqlite:///./data/shelfsync.db')


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    url = get_database_url().replace('sqlite+aiosqlite://', 'sqlite://')
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,  # Required for SQLite
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=True,  # Required for SQLite
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    url = get_database_url()
    if url.startswith('sqlite') and ':memory:' not in url:
        Path(url.split(':///', 1)[-1]).parent.mkdir(parents=True, exist_ok=True)

    connectable = create_async_engine(url, poolclass=pool.NullPool)

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
