"""Alembic Environment-Konfiguration für async SQLAlchemy."""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from app.config import settings
from app.database import Base

# Alle Models importieren, damit sie registriert werden
from app.models import (  # noqa: F401
    Agent,
    CallRecord,
    Campaign,
    CampaignLine,
    KnowledgeFile,
    PhoneNumber,
)

config = context.config

# Logging-Konfiguration
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Database URL aus Settings überschreiben
config.set_main_option("sqlalchemy.url", settings.database_url)

# Metadata für Autogenerate
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Migrationen ohne Verbindung ausführen (SQL-Ausgabe)."""
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
    """Führt die Migrationen auf einer Verbindung aus."""
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Migrationen mit async Engine ausführen."""
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    """Migrationen gegen die konfigurierte Datenbank ausführen."""
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
