"""Alembic environment for the relayguard schema.

Connection settings come from DatabaseSettings (DATABASE_* env vars, .env
honoured), so migrations and the runtime engine always target the same
database. Migrations run synchronously over psycopg.
"""

from logging.config import fileConfig

from sqlalchemy import create_engine, pool, text

from alembic import context
from relayguard.config.settings import DatabaseSettings
from relayguard.storage.database import build_db_url
from relayguard.storage.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

db_settings = DatabaseSettings()
schema = db_settings.schema_
target_metadata = Base.metadata


def _url() -> str:
    return build_db_url(db_settings, driver="psycopg")


def include_name(name, type_, parent_names):
    # Autogenerate must never touch schemas the host owns.
    if type_ == "schema":
        return name == schema
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        version_table_schema=schema,
        include_schemas=True,
        include_name=include_name,
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(url=_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(_url(), poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            # The version table lives in the schema, so it must exist first.
            connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
            connection.commit()

            _configure(connection=connection)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
