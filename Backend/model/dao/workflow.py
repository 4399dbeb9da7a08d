from datetime import datetime
from typing import Any, Self
from uuid import UUID

from sqlalchemy import ScalarResult
from sqlmodel import Column, Field, select

from core.constants import WORKFLOW_TRANSITIONS_TABLE
from core.database import SQLDatabase
from core.utils import naive_utc_now
from model.dao.base import JSONType, TimestampDAO, UuidDAO
from model.dto.workflow import TransitionRecordDTO, WorkflowDefinitionDTO


class WorkflowDefinitionDAO(UuidDAO, TimestampDAO, table=True):
    # model config
    __tablename__ = "workflow_definitions"
    __dto_class__ = WorkflowDefinitionDTO

    code: str = Field(nullable=False, unique=True, max_length=50)
    name: str | None = None
    description: str | None = None
    initial_state: str = Field(nullable=False, max_length=50)
    states: list[Any] = Field(
        default_factory=list, sa_column=Column(JSONType, nullable=False)
    )
    transitions: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSONType, nullable=False)
    )
    is_active: bool = Field(nullable=False, default=True)

    def to_dto(self) -> WorkflowDefinitionDTO:
        # Stored rules go through the same validation as newly created ones
        return WorkflowDefinitionDTO.parse(self.model_dump())

    @classmethod
    async def filter(
        cls,
        *,
        db_resource: SQLDatabase,
        id: UUID | None = None,
        code: str | None = None,
        is_active: bool | None = None,
    ) -> ScalarResult[Self]:
        """Filter workflow definitions by id, code and active flag."""
        async with db_resource.session() as session:
            query = select(WorkflowDefinitionDAO)
            if id is not None:
                query = query.where(WorkflowDefinitionDAO.id == id)
            if code is not None:
                query = query.where(WorkflowDefinitionDAO.code == code)
            if is_active is not None:
                query = query.where(WorkflowDefinitionDAO.is_active == is_active)
            return await session.scalars(query)


class WorkflowTransitionDAO(UuidDAO, table=True):
    """Append-only audit row written alongside every state change."""

    # model config
    __tablename__ = WORKFLOW_TRANSITIONS_TABLE
    __dto_class__ = TransitionRecordDTO

    submission_id: UUID = Field(nullable=False, index=True)
    from_state: str = Field(nullable=False, max_length=50)
    to_state: str = Field(nullable=False, max_length=50)
    action: str = Field(nullable=False, max_length=50)
    actor_id: str = Field(nullable=False, max_length=255)
    actor_name: str | None = Field(default=None, max_length=255)
    actor_role: str | None = Field(default=None, max_length=100)
    comment: str | None = None
    # `metadata` is reserved on declarative classes
    transition_metadata: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSONType, nullable=False)
    )
    transitioned_at: datetime = Field(
        default_factory=naive_utc_now, nullable=False, index=True
    )
    created_at: datetime = Field(default_factory=naive_utc_now, nullable=False)

    @classmethod
    async def filter(
        cls,
        *,
        db_resource: SQLDatabase,
        id: UUID | None = None,
        submission_id: UUID | None = None,
        action: str | None = None,
    ) -> ScalarResult[Self]:
        """Filter transitions by id, submission and action, oldest first."""
        async with db_resource.session() as session:
            query = select(WorkflowTransitionDAO)
            if id is not None:
                query = query.where(WorkflowTransitionDAO.id == id)
            if submission_id is not None:
                query = query.where(WorkflowTransitionDAO.submission_id == submission_id)
            if action is not None:
                query = query.where(WorkflowTransitionDAO.action == action)
            query = query.order_by(
                WorkflowTransitionDAO.transitioned_at, WorkflowTransitionDAO.created_at
            )
            return await session.scalars(query)
