"""Alembic environment configuration."""

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection

from coffee_rotation.infrastructure.db import models  # noqa: F401
from coffee_rotation.infrastructure.db.base import Base
from coffee_rotation.infrastructure.db.session import create_async_db_engine

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _get_database_url() -> str:
    """Resolve database URL from environment or ini."""

    env_url = os.getenv("DATABASE_URL")
    if env_url:
        return env_url
    config_url = config.get_main_option("sqlalchemy.url")
    if not config_url:
        raise ValueError("DATABASE_URL is required for migrations.")
    return config_url


def run_migrations_offline() -> None:
    """Run migrations in offline mode."""

    context.configure(
        url=_get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def _run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Run migrations in online mode over the async driver."""

    engine = create_async_db_engine(_get_database_url())
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_migrations)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
