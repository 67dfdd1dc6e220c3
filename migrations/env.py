import asyncio

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from greenloop.config import get_settings
from greenloop.database import Base
from greenloop.models import User, PointTransaction, PointEarningRule  # noqa: F401

config = context.config

# an explicit sqlalchemy.url (tests, one-off runs) wins over Settings
if not config.get_main_option("sqlalchemy.url"):
    settings = get_settings()
    # postgresql:// -> postgresql+asyncpg://
    database_url = settings.database_url.replace(
        "postgresql://", "postgresql+asyncpg://"
    )
    config.set_main_option("sqlalchemy.url", database_url)

# logging is configured by the application (greenloop.main.configure_logging)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit SQL to stdout without a database connection"""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
