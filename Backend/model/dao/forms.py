from typing import Any, Self
from uuid import UUID

from sqlalchemy import ScalarResult
from sqlmodel import Column, Field, select

from core.database import SQLDatabase
from model.dao.base import JSONType, TimestampDAO, UuidDAO
from model.dto.forms import AppFormDTO, ModuleDTO


class ModuleDAO(UuidDAO, TimestampDAO, table=True):
    # model config
    __tablename__ = "modules"
    __dto_class__ = ModuleDTO

    code: str = Field(nullable=False, unique=True, max_length=50)
    name: str
    schema_name: str | None = Field(default=None, max_length=63)

    @classmethod
    async def filter(
        cls,
        *,
        db_resource: SQLDatabase,
        id: UUID | None = None,
        code: str | None = None,
    ) -> ScalarResult[Self]:
        """Filter modules by id and code."""
        async with db_resource.session() as session:
            query = select(ModuleDAO)
            if id is not None:
                query = query.where(ModuleDAO.id == id)
            if code is not None:
                query = query.where(ModuleDAO.code == code)
            return await session.scalars(query)


class AppFormDAO(UuidDAO, TimestampDAO, table=True):
    # model config
    __tablename__ = "app_forms"
    __dto_class__ = AppFormDTO

    code: str = Field(nullable=False, unique=True, max_length=50)
    title: str
    description: str | None = None
    module_id: UUID | None = Field(
        default=None, foreign_key="modules.id", ondelete="SET NULL", nullable=True
    )
    form_schema: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSONType, nullable=False)
    )
    steps: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSONType, nullable=False)
    )
    workflow_id: UUID | None = Field(
        default=None,
        foreign_key="workflow_definitions.id",
        ondelete="SET NULL",
        nullable=True,
    )
    initial_state: str | None = Field(default=None, max_length=50)
    db_table_name: str | None = Field(default=None, max_length=63)
    is_active: bool = Field(nullable=False, default=True)
    created_by: str | None = Field(default=None, max_length=255)

    @classmethod
    async def filter(
        cls,
        *,
        db_resource: SQLDatabase,
        id: UUID | None = None,
        code: str | None = None,
        module_id: UUID | None = None,
        is_active: bool | None = None,
    ) -> ScalarResult[Self]:
        """Filter forms by id, code, module and active flag."""
        async with db_resource.session() as session:
            query = select(AppFormDAO)
            if id is not None:
                query = query.where(AppFormDAO.id == id)
            if code is not None:
                query = query.where(AppFormDAO.code == code)
            if module_id is not None:
                query = query.where(AppFormDAO.module_id == module_id)
            if is_active is not None:
                query = query.where(AppFormDAO.is_active == is_active)
            return await session.scalars(query.order_by(AppFormDAO.code))
