"""Alembic migration environment configuration.

- Loads SQLAlchemy models for autogenerate support
- Configures database connection from environment
- Supports both online and offline migration modes
"""

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from locofit.db import psycopg_url
from locofit.db.models import Base  # registers every model with the metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    """Get database URL from environment or config.

    Priority:
    1. DATABASE_URL environment variable
    2. LOCOFIT_DATABASE__URL environment variable
    3. sqlalchemy.url from alembic.ini

    Plain postgresql:// URLs are pointed at the psycopg driver.
    """
    url = (
        os.environ.get("DATABASE_URL")
        or os.environ.get("LOCOFIT_DATABASE__URL")
        or config.get_main_option("sqlalchemy.url", "")
    )
    return psycopg_url(url)


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    Generates SQL script without connecting to database.
    """
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    # NullPool ensures connections are closed immediately after use
    connectable = create_engine(get_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
