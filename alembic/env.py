import asyncio
import logging

from alembic import context

from config.settings import settings
from src.pm_common.database import create_engine
from src.pm_common.logging_setup import configure_logging

config = context.config
# No alembic.ini: the database URL and log level both come from Settings
configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger("alembic.env")

target_metadata = None  # Raw SQL migrations, no autogenerate


def run_migrations_offline() -> None:
    """Emit SQL for the market / position / user_stats schema without connecting."""
    context.configure(
        url=settings.DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):  # type: ignore[no-untyped-def]
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Apply migrations through the same async engine the store uses."""
    connectable = create_engine(settings)
    logger.info("Migrating local store at %s", connectable.url.render_as_string(hide_password=True))
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
