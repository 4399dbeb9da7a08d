from datetime import datetime
from typing import Any, Mapping, Self
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from core.constants import BASE_COLUMN_NAMES
from core.utils import is_default_namespace, qualify_table_name


class TableRef(BaseModel):
    """Handle to a physical dynamic table."""

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str | None = None

    @property
    def schema_name(self) -> str | None:
        """SQLAlchemy ``schema`` argument; ``None`` for the default namespace."""
        return None if is_default_namespace(self.namespace) else self.namespace

    @property
    def qualified_name(self) -> str:
        return qualify_table_name(self.namespace, self.name)


class RecordContext(BaseModel):
    """Form linkage merged into every inserted record."""

    form_id: UUID
    form_code: str
    business_vertical_id: UUID
    site_id: UUID | None = None
    workflow_id: UUID | None = None
    initial_state: str | None = None


class DynamicRecord(BaseModel):
    id: UUID
    form_id: UUID
    form_code: str
    business_vertical_id: UUID
    site_id: UUID | None = None
    workflow_id: UUID | None = None
    current_state: str
    created_by: str
    created_at: datetime
    updated_by: str | None = None
    updated_at: datetime | None = None
    deleted_by: str | None = None
    deleted_at: datetime | None = None
    data: dict[str, Any] = {}

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Self:
        """Split a table row into base attributes and submitted field values."""
        base = {key: row.get(key) for key in BASE_COLUMN_NAMES}
        base["data"] = {
            key: value for key, value in row.items() if key not in BASE_COLUMN_NAMES
        }
        return cls.model_validate(base)
