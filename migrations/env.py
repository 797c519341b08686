"""Alembic migration environment.

The database URL comes from application settings (DATABASE_URL / .env),
rewritten from the async driver the service runs on to the sync psycopg2
driver Alembic needs:
    postgresql+asyncpg://...  →  postgresql+psycopg2://...

`alembic upgrade head --sql` renders the DDL offline without a connection.
"""
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

from escrow_risk.core.config import get_settings
from escrow_risk.models.database import Base
# imported for their table registrations on Base.metadata
from escrow_risk.models import delivery, dispute, enforcement, event, risk_profile, transaction  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def sync_database_url(url: str) -> str:
    return url.replace("postgresql+asyncpg://", "postgresql+psycopg2://")


config.set_main_option("sqlalchemy.url", sync_database_url(get_settings().database_url))
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
