from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from core.database import SQLDatabase, storage_errors
from core.exceptions import NotFoundException, StorageException
from model.dao.organization import BusinessVerticalDAO


class TestTransactions:
    async def test_transaction_commits_on_success(self, pg_database: SQLDatabase) -> None:
        async with pg_database.transaction() as session:
            session.add(BusinessVerticalDAO(code="water", name="Water"))

        found = (
            await BusinessVerticalDAO.filter(db_resource=pg_database, code="water")
        ).first()
        assert found is not None

    async def test_transaction_rolls_back_on_error(self, pg_database: SQLDatabase) -> None:
        with pytest.raises(RuntimeError):
            async with pg_database.transaction() as session:
                session.add(BusinessVerticalDAO(code="solar", name="Solar"))
                await session.flush()
                raise RuntimeError("boom")

        found = (
            await BusinessVerticalDAO.filter(db_resource=pg_database, code="solar")
        ).first()
        assert found is None

    async def test_unit_of_work_joins_given_session(
        self, pg_database: SQLDatabase
    ) -> None:
        with pytest.raises(RuntimeError):
            async with pg_database.transaction() as outer:
                async with pg_database.unit_of_work(outer) as inner:
                    assert inner is outer
                    inner.add(BusinessVerticalDAO(code="roads", name="Roads"))
                    await inner.flush()
                raise RuntimeError("outer failure")

        async with pg_database.session() as session:
            result = await session.scalars(
                select(BusinessVerticalDAO).where(BusinessVerticalDAO.code == "roads")
            )
            assert result.first() is None

    async def test_get_returns_none_for_unknown_id(self, pg_database: SQLDatabase) -> None:
        assert await BusinessVerticalDAO.get(uuid4(), db_resource=pg_database) is None


class TestStorageErrors:
    def test_wraps_sqlalchemy_errors_with_operation(self) -> None:
        with pytest.raises(StorageException) as exc_info:
            with storage_errors("insert into site_visit"):
                raise OperationalError("INSERT ...", {}, Exception("disk full"))

        assert exc_info.value.operation == "insert into site_visit"
        assert exc_info.value.status_code == 500
        assert "failed to insert into site_visit" in exc_info.value.message

    def test_leaves_domain_errors_untouched(self) -> None:
        with pytest.raises(NotFoundException):
            with storage_errors("read site_visit"):
                raise NotFoundException("missing")
