from logging import Logger
from typing import Any, Collection, Mapping
from uuid import UUID, uuid4

from sqlalchemy import MetaData, Table, func, inspect, insert, select, update
from sqlalchemy.exc import NoSuchTableError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.schema import CreateIndex, CreateTable

from core.constants import BASE_COLUMN_NAMES, LIFECYCLE_COLUMNS, READ_ONLY_COLUMNS
from core.database import SQLDatabase, storage_errors
from core.environment import settings
from core.exceptions import (
    ConcurrentModificationException,
    NotFoundException,
    ValidationException,
)
from core.logger import app_logger
from core.utils import generate_table_name, naive_utc_now, sanitize_identifier
from model.dao.dynamic_table import (
    DropTableCascade,
    build_form_table,
    form_table_indexes,
    reflect_form_table,
)
from model.dto.dynamic_table import DynamicRecord, RecordContext, TableRef
from model.dto.forms import FormBlueprint
from model.values import coerce_value, kind_for_sql_type
from service.namespace import NamespaceManager


class DynamicTableManager:
    """DDL and allowlisted DML against per-form submission tables.

    Every statement is built with SQLAlchemy Core from a `Table` whose
    columns were either declared from a blueprint or reflected from the
    database, so identifiers never come from caller input and values are
    always bound parameters.

    Mutating operations accept an optional ``session``; when given they join
    the caller's transaction instead of opening their own.
    """

    generate_table_name = staticmethod(generate_table_name)

    def __init__(self, pg_database: SQLDatabase, logger: Logger = app_logger):
        self._db = pg_database
        self._logger = logger

    async def create_table(
        self, blueprint: FormBlueprint, namespace: str | None = None
    ) -> TableRef:
        ref = TableRef(
            name=blueprint.table_name,
            namespace=namespace if namespace is not None else blueprint.namespace,
        )
        if ref.schema_name is not None:
            NamespaceManager.validate_namespace_name(ref.schema_name)

        table = build_form_table(ref, blueprint.fields)
        indexes = form_table_indexes(table, ref)

        self._logger.info(
            f"Creating table `{ref.qualified_name}` for form `{blueprint.code}` "
            f"with {len(blueprint.fields)} fields"
        )
        with storage_errors(f"create table {ref.qualified_name}"):
            async with self._db.connect() as conn:
                await conn.execute(CreateTable(table, if_not_exists=True))
                for index in indexes:
                    await conn.execute(CreateIndex(index, if_not_exists=True))

        return ref

    async def table_exists(self, namespace: str | None, table: str) -> bool:
        ref = TableRef(name=table, namespace=namespace)
        with storage_errors(f"inspect table {ref.qualified_name}"):
            async with self._db.connect() as conn:
                return await conn.run_sync(
                    lambda sync_conn: inspect(sync_conn).has_table(
                        ref.name, schema=ref.schema_name
                    )
                )

    async def drop_table(self, table: TableRef) -> None:
        self._logger.warning(f"Dropping table `{table.qualified_name}`")
        target = Table(table.name, MetaData(), schema=table.schema_name)
        with storage_errors(f"drop table {table.qualified_name}"):
            async with self._db.connect() as conn:
                await conn.execute(DropTableCascade(target, if_exists=True))

    async def insert_record(
        self,
        table: TableRef,
        context: RecordContext,
        data: Mapping[str, Any],
        actor_id: str,
        session: AsyncSession | None = None,
    ) -> UUID:
        with storage_errors(f"insert into {table.qualified_name}"):
            async with self._db.unit_of_work(session) as session:
                form_table = await self._load_table(session, table)
                # System-managed values always win over submitted ones
                values = self._bind_values(form_table, data, skip=BASE_COLUMN_NAMES)

                record_id = uuid4()
                now = naive_utc_now()
                values.update(
                    id=record_id,
                    form_id=context.form_id,
                    form_code=context.form_code,
                    business_vertical_id=context.business_vertical_id,
                    site_id=context.site_id,
                    workflow_id=context.workflow_id,
                    current_state=context.initial_state
                    or settings.DEFAULT_WORKFLOW_STATE,
                    created_by=actor_id,
                    created_at=now,
                    updated_at=now,
                )

                await session.execute(insert(form_table).values(values))

        self._logger.info(f"Inserted record `{record_id}` into `{table.qualified_name}`")
        return record_id

    async def update_record(
        self,
        table: TableRef,
        record_id: UUID,
        fields: Mapping[str, Any],
        actor_id: str,
        session: AsyncSession | None = None,
    ) -> None:
        with storage_errors(f"update {table.qualified_name}"):
            async with self._db.unit_of_work(session) as session:
                form_table = await self._load_table(session, table)
                values = self._bind_values(
                    form_table, fields, skip=READ_ONLY_COLUMNS | LIFECYCLE_COLUMNS
                )
                values.update(updated_by=actor_id, updated_at=naive_utc_now())

                result = await session.execute(
                    update(form_table)
                    .where(
                        form_table.c.id == record_id,
                        form_table.c.deleted_at.is_(None),
                    )
                    .values(values)
                )
                if result.rowcount == 0:
                    raise NotFoundException(
                        f"Record `{record_id}` not found in `{table.qualified_name}`"
                    )

        self._logger.info(f"Updated record `{record_id}` in `{table.qualified_name}`")

    async def get_record(
        self,
        table: TableRef,
        record_id: UUID,
        session: AsyncSession | None = None,
    ) -> DynamicRecord:
        with storage_errors(f"read from {table.qualified_name}"):
            async with self._db.unit_of_work(session) as session:
                form_table = await self._load_table(session, table)
                row = (
                    await session.execute(
                        select(form_table).where(
                            form_table.c.id == record_id,
                            form_table.c.deleted_at.is_(None),
                        )
                    )
                ).mappings().one_or_none()

        if row is None:
            raise NotFoundException(
                f"Record `{record_id}` not found in `{table.qualified_name}`"
            )
        return DynamicRecord.from_row(row)

    async def list_records(
        self,
        table: TableRef,
        business_vertical_id: UUID,
        filters: Mapping[str, Any] | None = None,
        session: AsyncSession | None = None,
    ) -> list[DynamicRecord]:
        with storage_errors(f"list {table.qualified_name}"):
            async with self._db.unit_of_work(session) as session:
                form_table = await self._load_table(session, table)
                conditions = [
                    form_table.c[name] == value
                    for name, value in self._bind_values(
                        form_table, filters or {}
                    ).items()
                ]

                query = (
                    select(form_table)
                    .where(
                        form_table.c.business_vertical_id == business_vertical_id,
                        form_table.c.deleted_at.is_(None),
                        *conditions,
                    )
                    .order_by(form_table.c.created_at.desc())
                )
                rows = (await session.execute(query)).mappings().all()

        return [DynamicRecord.from_row(row) for row in rows]

    async def state_counts(
        self, table: TableRef, business_vertical_id: UUID
    ) -> dict[str, int]:
        """Number of live records per workflow state."""
        with storage_errors(f"count states in {table.qualified_name}"):
            async with self._db.unit_of_work() as session:
                form_table = await self._load_table(session, table)
                query = (
                    select(form_table.c.current_state, func.count())
                    .where(
                        form_table.c.business_vertical_id == business_vertical_id,
                        form_table.c.deleted_at.is_(None),
                    )
                    .group_by(form_table.c.current_state)
                )
                rows = (await session.execute(query)).all()

        return {state: count for state, count in rows}

    async def soft_delete(
        self,
        table: TableRef,
        record_id: UUID,
        actor_id: str,
        session: AsyncSession | None = None,
    ) -> bool:
        """Mark a live record deleted.

        Returns ``False`` without touching the row when it is already
        deleted, raises `NotFoundException` when it never existed.
        """
        with storage_errors(f"delete from {table.qualified_name}"):
            async with self._db.unit_of_work(session) as session:
                form_table = await self._load_table(session, table)
                result = await session.execute(
                    update(form_table)
                    .where(
                        form_table.c.id == record_id,
                        form_table.c.deleted_at.is_(None),
                    )
                    .values(deleted_at=naive_utc_now(), deleted_by=actor_id)
                )
                if result.rowcount:
                    self._logger.info(
                        f"Soft deleted record `{record_id}` from `{table.qualified_name}`"
                    )
                    return True

                existing = await session.scalar(
                    select(form_table.c.id).where(form_table.c.id == record_id)
                )

        if existing is None:
            raise NotFoundException(
                f"Record `{record_id}` not found in `{table.qualified_name}`"
            )
        self._logger.debug(f"Record `{record_id}` is already deleted")
        return False

    async def set_state(
        self,
        table: TableRef,
        record_id: UUID,
        new_state: str,
        actor_id: str,
        expected_state: str | None = None,
        session: AsyncSession | None = None,
    ) -> None:
        """Move a live record to ``new_state``.

        With ``expected_state`` the write only applies while the record is
        still in that state; otherwise `ConcurrentModificationException`.
        """
        with storage_errors(f"update state in {table.qualified_name}"):
            async with self._db.unit_of_work(session) as session:
                form_table = await self._load_table(session, table)
                statement = update(form_table).where(
                    form_table.c.id == record_id,
                    form_table.c.deleted_at.is_(None),
                )
                if expected_state is not None:
                    statement = statement.where(
                        form_table.c.current_state == expected_state
                    )

                result = await session.execute(
                    statement.values(
                        current_state=new_state,
                        updated_by=actor_id,
                        updated_at=naive_utc_now(),
                    )
                )
                if result.rowcount == 0:
                    if expected_state is not None:
                        raise ConcurrentModificationException(record_id, expected_state)
                    raise NotFoundException(
                        f"Record `{record_id}` not found in `{table.qualified_name}`"
                    )

        self._logger.info(
            f"Record `{record_id}` in `{table.qualified_name}` moved to '{new_state}'"
        )

    async def _load_table(self, session: AsyncSession, table: TableRef) -> Table:
        try:
            return await session.run_sync(
                lambda sync_session: reflect_form_table(sync_session.connection(), table)
            )
        except NoSuchTableError as exc:
            raise NotFoundException(
                f"Table `{table.qualified_name}` does not exist"
            ) from exc

    @staticmethod
    def _bind_values(
        table: Table,
        data: Mapping[str, Any],
        skip: Collection[str] = (),
    ) -> dict[str, Any]:
        """Resolve caller keys to known columns and coerce their values.

        Keys are matched as-is first, then by their sanitized form. Columns
        named in ``skip`` are dropped silently; anything else unknown is
        rejected.
        """
        values: dict[str, Any] = {}
        for key, value in data.items():
            name = key if key in table.c else sanitize_identifier(key)
            if name in skip:
                continue
            if name not in table.c:
                raise ValidationException(
                    f"Unknown column `{key}` for table `{table.fullname}`"
                )
            if name in values:
                raise ValidationException(
                    f"Column `{name}` supplied more than once"
                )

            column = table.c[name]
            values[name] = coerce_value(kind_for_sql_type(column.type), value, name)
        return values
