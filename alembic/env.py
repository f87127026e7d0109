"""Alembic environment for the UI preference store.

The URL comes from labcalendar.config so migrations and the app always hit
the same database. SQLite gets batch mode, since it cannot ALTER columns in place.
"""
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from labcalendar.config import settings
from labcalendar.database import Base
from labcalendar.models.preference import UiPreference  # noqa: F401

config = context.config
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
is_sqlite = settings.DATABASE_URL.startswith("sqlite")


def _migrate(**options) -> None:
    context.configure(
        target_metadata=target_metadata,
        render_as_batch=is_sqlite,
        compare_type=True,
        **options,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_offline() -> None:
    """Emit SQL for the migrations without a live connection."""
    _migrate(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )


def run_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        _migrate(connection=connection)


if context.is_offline_mode():
    run_offline()
else:
    run_online()
