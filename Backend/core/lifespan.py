from contextlib import asynccontextmanager
from typing import AsyncIterator

from core.di_container import DependencyContainer
from core.logger import app_logger


@asynccontextmanager
async def lifespan_manager(
    container: DependencyContainer | None = None,
) -> AsyncIterator[DependencyContainer]:
    """Initialise the container's resources and static tables for the caller."""

    # Run at start
    container = container or DependencyContainer()
    await container.init_resources()
    pg_database = await container.pg_database.async_()
    await pg_database.initialize_schema()

    try:
        # Yield to caller
        yield container
    finally:
        # Run at shutdown
        app_logger.info("Releasing resources")
        await container.shutdown_resources()
