from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, computed_field, field_validator

from core.logger import app_logger
from core.utils import generate_table_name, sanitize_identifier
from model.dao.enums import FieldType, ProvisionStatus


class FieldSpec(BaseModel):
    name: str = Field(min_length=1)
    type: FieldType = FieldType.SHORT_TEXT
    label: str | None = None
    required: bool = False
    max_length: int | None = None
    format: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def resolve_type_alias(cls, value: Any) -> FieldType:
        if isinstance(value, FieldType):
            return value
        if value is None or value == "":
            return FieldType.SHORT_TEXT

        resolved = FieldType.from_alias(str(value))
        if resolved is None:
            app_logger.warning(f"Unknown field type `{value}`, storing as short text")
            return FieldType.SHORT_TEXT
        return resolved

    @field_validator("max_length", mode="before")
    @classmethod
    def positive_max_length(cls, value: Any) -> int | None:
        if value is None or isinstance(value, bool):
            return None
        try:
            length = int(value)
        except (TypeError, ValueError):
            return None
        return length if length > 0 else None

    @property
    def column_name(self) -> str:
        return sanitize_identifier(self.name)


class FormBlueprint(BaseModel):
    code: str
    namespace: str | None = None
    fields: list[FieldSpec] = []
    form_id: UUID | None = None
    workflow_id: UUID | None = None

    @property
    def table_name(self) -> str:
        return generate_table_name(self.code)


class ModuleDTO(BaseModel):
    id: UUID
    code: str
    name: str
    schema_name: str | None = None


class AppFormDTO(BaseModel):
    id: UUID
    code: str
    title: str
    description: str | None = None
    module_id: UUID | None = None
    form_schema: dict[str, Any] = {}
    steps: list[dict[str, Any]] = []
    workflow_id: UUID | None = None
    initial_state: str | None = None
    db_table_name: str | None = None
    is_active: bool = True


class FormCreateDTO(BaseModel):
    code: str
    title: str
    description: str | None = None
    module_id: UUID | None = None
    form_schema: dict[str, Any] = {}
    steps: list[dict[str, Any]] = []
    workflow_id: UUID | None = None
    initial_state: str | None = None


class TableStatusDTO(BaseModel):
    form_code: str
    table_name: str | None = None
    namespace: str | None = None
    has_table_name: bool
    table_exists: bool

    @computed_field
    @property
    def using_dedicated(self) -> bool:
        return self.has_table_name and self.table_exists


class TableProvisionResultDTO(BaseModel):
    form_code: str
    table_name: str | None = None
    status: ProvisionStatus
    message: str
