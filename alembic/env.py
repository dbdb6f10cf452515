# alembic/env.py
import os
import sys
from logging.config import fileConfig

from dotenv import load_dotenv
from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

# --- CUSTOM SETUP ---
# Add the project root directory to the Python path.
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
src_path = os.path.join(project_root, 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)
replay_common_path = os.path.join(project_root, 'src', 'libs', 'replay-common')
if replay_common_path not in sys.path:
    sys.path.insert(0, replay_common_path)

# Load environment variables from the .env file at the project root
dotenv_path = os.path.join(project_root, '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)
# --- END CUSTOM SETUP ---

# this is the Alembic Config object
config = context.config

if config.config_file_name:
    fileConfig(config.config_file_name)

# Import the Base and all audit models so the metadata is populated for
# autogenerate and upgrade. Event tables live in their own metadata.
from replay_common.database_models import (  # noqa: E402
    Base, ReplayJob, ReplayItem, HousekeepingRun, HousekeepingRunItem, HousekeepingDaily
)
from replay_common.db import get_sync_database_url  # noqa: E402
from replay_common.event_tables import get_event_catalog, event_metadata  # noqa: E402

get_event_catalog()
target_metadata = [Base.metadata, event_metadata]


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=get_sync_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    engine_config = config.get_section(config.config_ini_section) or {}
    engine_config["sqlalchemy.url"] = get_sync_database_url()

    connectable = engine_from_config(
        engine_config,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection, target_metadata=target_metadata
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
