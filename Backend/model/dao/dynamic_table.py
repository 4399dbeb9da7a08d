"""Table definitions for per-form submission tables.

Unlike the static DAOs, these tables are created at runtime from a form
blueprint, so they are described with SQLAlchemy Core `Table` objects in a
throwaway `MetaData` rather than with SQLModel classes.
"""

from hashlib import md5
from typing import Iterable

from sqlalchemy import (
    Boolean,
    Column,
    Connection,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    Time,
    Uuid,
    func,
    text,
)
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.schema import DropTable
from sqlalchemy.types import TypeEngine

from core.constants import BASE_COLUMN_NAMES, MAX_IDENTIFIER_LENGTH
from core.environment import settings
from core.exceptions import ValidationException
from model.dao.base import JSONType
from model.dao.enums import FieldType
from model.dao.forms import AppFormDAO
from model.dao.organization import BusinessVerticalDAO, SiteDAO
from model.dao.workflow import WorkflowDefinitionDAO
from model.dto.dynamic_table import TableRef
from model.dto.forms import FieldSpec


class DropTableCascade(DropTable):
    """``DROP TABLE`` that also removes dependent objects where supported."""


@compiles(DropTableCascade)
def _compile_drop_table(element, compiler, **kw):
    return compiler.visit_drop_table(element, **kw)


@compiles(DropTableCascade, "postgresql")
def _compile_drop_table_cascade(element, compiler, **kw):
    return compiler.visit_drop_table(element, **kw) + " CASCADE"


def base_columns(with_foreign_keys: bool = True) -> list[Column]:
    """System-managed columns shared by every form table, in DDL order."""

    def fk(target: Column) -> list[ForeignKey]:
        return [ForeignKey(target)] if with_foreign_keys else []

    return [
        Column("id", Uuid, primary_key=True),
        Column("created_by", String(255), nullable=False),
        Column(
            "created_at",
            DateTime,
            nullable=False,
            server_default=func.current_timestamp(),
        ),
        Column("updated_by", String(255)),
        Column("updated_at", DateTime),
        Column("deleted_by", String(255)),
        Column("deleted_at", DateTime),
        Column(
            "business_vertical_id",
            Uuid,
            *fk(BusinessVerticalDAO.__table__.c.id),
            nullable=False,
        ),
        Column("site_id", Uuid, *fk(SiteDAO.__table__.c.id)),
        Column("workflow_id", Uuid, *fk(WorkflowDefinitionDAO.__table__.c.id)),
        Column(
            "current_state",
            String(50),
            nullable=False,
            server_default=text(f"'{settings.DEFAULT_WORKFLOW_STATE}'"),
        ),
        Column("form_id", Uuid, *fk(AppFormDAO.__table__.c.id), nullable=False),
        Column("form_code", String(50), nullable=False),
    ]


def column_type_for(field: FieldSpec) -> TypeEngine:
    match field.type:
        case FieldType.SHORT_TEXT | FieldType.LONG_TEXT:
            return String(field.max_length) if field.max_length else Text()
        case FieldType.INTEGER:
            return Integer()
        case FieldType.DECIMAL:
            return Numeric(15, 2)
        case FieldType.DATE:
            return Date()
        case FieldType.DATETIME:
            return DateTime()
        case FieldType.TIME:
            return Time()
        case FieldType.BOOLEAN:
            return Boolean()
        case FieldType.SINGLE_CHOICE:
            return String(255)
        case FieldType.FILE_REFERENCE:
            return String(500)
        case FieldType.MULTI_CHOICE | FieldType.JSON:
            return JSONType
    return Text()


def build_form_table(ref: TableRef, fields: Iterable[FieldSpec]) -> Table:
    """Describe a form table: the base columns followed by one column per field.

    Raises `ValidationException` when a field's column name is empty, repeats
    another field's, or shadows a base column.
    """
    seen: set[str] = set()
    field_columns: list[Column] = []

    for field in fields:
        name = field.column_name
        if not name:
            raise ValidationException(
                f"Field `{field.name}` does not yield a valid column name"
            )
        if name in BASE_COLUMN_NAMES:
            raise ValidationException(
                f"Field `{field.name}` collides with system column `{name}`"
            )
        if name in seen:
            raise ValidationException(f"Duplicate field column `{name}`")
        seen.add(name)

        field_columns.append(
            Column(name, column_type_for(field), nullable=not field.required)
        )

    return Table(
        ref.name,
        MetaData(),
        *base_columns(),
        *field_columns,
        schema=ref.schema_name,
    )


def _index_name(prefix: str, suffix: str) -> str:
    name = f"idx_{prefix}_{suffix}"
    if len(name) <= MAX_IDENTIFIER_LENGTH:
        return name

    digest = md5(name.encode()).hexdigest()[:8]
    return f"{name[: MAX_IDENTIFIER_LENGTH - len(digest) - 1]}_{digest}"


def form_table_indexes(table: Table, ref: TableRef) -> list[Index]:
    prefix = ref.qualified_name.replace(".", "_")
    return [
        Index(_index_name(prefix, suffix), table.c[column])
        for suffix, column in (
            ("business_vertical", "business_vertical_id"),
            ("site", "site_id"),
            ("state", "current_state"),
            ("form", "form_id"),
            ("deleted", "deleted_at"),
        )
    ]


def reflect_form_table(sync_conn: Connection, ref: TableRef) -> Table:
    """Load an existing form table's column set from the database.

    Base columns are declared explicitly so that their Python types do not
    depend on how the backend reports them. Raises
    `sqlalchemy.exc.NoSuchTableError` when the table is missing.
    """
    return Table(
        ref.name,
        MetaData(),
        *base_columns(with_foreign_keys=False),
        schema=ref.schema_name,
        autoload_with=sync_conn,
        resolve_fks=False,
    )
