"""Alembic environment for the Gifted Tutor schema.

There is no SQLAlchemy metadata; revisions execute SQL directly.
"""
import os
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

load_dotenv(Path(__file__).resolve().parents[1] / ".env")

config = context.config

if config.config_file_name is not None:
    # Keep the application's loggers when migrations run at startup
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _database_url() -> str:
    """The URL set by app.db.database.init_db, else one built from the environment."""
    configured = config.get_main_option("sqlalchemy.url")
    if configured:
        return configured
    database_url = os.getenv("DATABASE_URL", "")
    if database_url.startswith(("postgresql://", "postgres://")):
        return "postgresql://" + database_url.split("://", 1)[1]
    return f"sqlite:///{os.getenv('DATABASE_PATH', 'gifted_tutor.db')}"


url = _database_url()
config.set_main_option("sqlalchemy.url", url)
render_as_batch = url.startswith("sqlite")

if context.is_offline_mode():
    context.configure(
        url=url,
        target_metadata=None,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=render_as_batch,
    )
    with context.begin_transaction():
        context.run_migrations()
else:
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=None,
            render_as_batch=render_as_batch,
        )
        with context.begin_transaction():
            context.run_migrations()
