from contextlib import asynccontextmanager, contextmanager
import logging
from typing import AsyncIterator, Iterator, Self
from dependency_injector.resources import AsyncResource
from sqlalchemy import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from core.environment import SQLConfig
from core.exceptions import StorageException
from core.logger import app_logger


class SQLDatabase(AsyncResource):
    async def init(
        self, db_config: SQLConfig, logger: logging.Logger = app_logger
    ) -> Self:
        db_url = URL.create(
            drivername=db_config.driver,
            username=db_config.username,
            password=db_config.password,
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            query=db_config.additional_config or {},
        )
        self._logger = logger

        self._engine = create_async_engine(db_url, pool_recycle=3600)

        self._session_factory = async_sessionmaker(
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False,
            bind=self._engine,
        )

        return self

    async def shutdown(self, _: None) -> None:
        self._logger.info("Shutting down...")
        await self._engine.dispose()

    async def initialize_schema(self) -> None:
        """Create the static tables if they don't exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._logger.info("Static tables initialized")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        session: AsyncSession = self._session_factory()
        try:
            yield session
        except Exception as e:
            self._logger.error("An error occurred. Rolling back", exc_info=e)
            await session.rollback()
            raise
        finally:
            self._logger.debug("Closing session")
            await session.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session bound to a single transaction.

        Commits when the block completes, rolls back on any exception.
        """
        async with self.session() as session:
            async with session.begin():
                yield session

    @asynccontextmanager
    async def unit_of_work(
        self, session: AsyncSession | None = None
    ) -> AsyncIterator[AsyncSession]:
        """Join the caller's session if one is given, otherwise open a transaction."""
        if session is not None:
            yield session
            return

        async with self.transaction() as own_session:
            yield own_session

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[AsyncConnection]:
        async with self._engine.begin() as conn:
            yield conn


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Re-raise driver and SQLAlchemy failures as `StorageException`."""
    try:
        yield
    except SQLAlchemyError as exc:
        raise StorageException(operation, exc) from exc
