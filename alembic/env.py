# alembic/env.py
from logging.config import fileConfig
import asyncio

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from medqueue.db.base import Base
import medqueue.db.models  # noqa: F401  (registers the tables on Base.metadata)
from medqueue.config.settings import settings

#####################################################################
# URLs: the app runs on asyncpg, offline SQL rendering needs a sync URL
#####################################################################

ASYNC_URL = str(settings.database_url)                  # postgresql+asyncpg://...
SYNC_URL = ASYNC_URL.replace("+asyncpg", "")            # postgresql://...

config = context.config
config.set_main_option("sqlalchemy.url", SYNC_URL)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def include_object(obj, name, type_, reflected, compare_to):
    # The overlap exclusion constraints are managed by hand in the migrations;
    # autogenerate cannot see them on the ORM side.
    if type_ == "constraint" and name and name.startswith("ex_appointments_"):
        return False
    return True


def run_migrations_offline() -> None:
    context.configure(
        url=SYNC_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_object=include_object,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(ASYNC_URL, poolclass=pool.NullPool)
    async with engine.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
