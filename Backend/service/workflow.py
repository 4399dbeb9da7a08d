from logging import Logger
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.database import SQLDatabase, storage_errors
from core.environment import settings
from core.exceptions import (
    CommentRequiredException,
    ConcurrentModificationException,
    ConflictException,
    InvalidTransitionException,
    NotFoundException,
    PermissionDeniedException,
)
from core.logger import app_logger
from model.dao.workflow import WorkflowDefinitionDAO, WorkflowTransitionDAO
from model.dto.dynamic_table import TableRef
from model.dto.workflow import (
    ActorDTO,
    TransitionRecordDTO,
    TransitionRule,
    WorkflowActionDTO,
    WorkflowDefinitionDTO,
)
from service.dynamic_table import DynamicTableManager
from service.notifications import TransitionNotifier


class WorkflowEngine:
    """Validates and applies workflow transitions to form records.

    A transition reads the record, checks the matching rule, moves the
    record with a write conditioned on the state it just read, and appends
    the audit row, all in one transaction. The notifier runs only after
    that transaction has committed.
    """

    def __init__(
        self,
        pg_database: SQLDatabase,
        table_manager: DynamicTableManager,
        notifier: TransitionNotifier | None = None,
        logger: Logger = app_logger,
    ):
        self._db = pg_database
        self._tables = table_manager
        self._notifier = notifier
        self._logger = logger

    def check_transition(
        self,
        definition: WorkflowDefinitionDTO,
        current_state: str,
        action: str,
        *,
        comment: str | None = None,
        permissions: Iterable[str] = (),
    ) -> TransitionRule:
        rule = next(
            (
                rule
                for rule in definition.transitions
                if rule.from_state == current_state and rule.action == action
            ),
            None,
        )
        if rule is None:
            raise InvalidTransitionException(action, current_state)

        if rule.requires_comment and not (comment and comment.strip()):
            raise CommentRequiredException(action, current_state)

        if rule.required_permission and not self._has_permission(
            rule.required_permission, permissions
        ):
            raise PermissionDeniedException(
                action, current_state, rule.required_permission
            )

        return rule

    def available_actions(
        self,
        definition: WorkflowDefinitionDTO,
        state: str,
        permissions: Iterable[str] | None = None,
    ) -> list[WorkflowActionDTO]:
        """Actions leaving ``state``, limited to ``permissions`` when given."""
        if permissions is not None:
            permissions = list(permissions)

        actions = []
        for rule in definition.transitions:
            if rule.from_state != state:
                continue
            if (
                permissions is not None
                and rule.required_permission
                and not self._has_permission(rule.required_permission, permissions)
            ):
                continue

            actions.append(
                WorkflowActionDTO(
                    action=rule.action,
                    label=rule.label or rule.action,
                    to_state=rule.to_state,
                    requires_comment=rule.requires_comment,
                    permission=rule.required_permission,
                )
            )
        return actions

    async def transition(
        self,
        table: TableRef,
        record_id: UUID,
        definition: WorkflowDefinitionDTO,
        action: str,
        actor: ActorDTO,
        *,
        comment: str | None = None,
        metadata: dict[str, Any] | None = None,
        expected_state: str | None = None,
    ) -> TransitionRecordDTO:
        with storage_errors(f"transition record {record_id}"):
            async with self._db.transaction() as session:
                record = await self._tables.get_record(table, record_id, session=session)
                current_state = record.current_state

                if expected_state is not None and current_state != expected_state:
                    raise ConcurrentModificationException(record_id, expected_state, action)

                rule = self.check_transition(
                    definition,
                    current_state,
                    action,
                    comment=comment,
                    permissions=actor.permissions,
                )

                try:
                    await self._tables.set_state(
                        table,
                        record_id,
                        rule.to_state,
                        actor.id,
                        expected_state=current_state,
                        session=session,
                    )
                except ConcurrentModificationException as exc:
                    exc.action = action
                    raise

                audit = await self._append_transition(
                    session,
                    record_id=record_id,
                    rule=rule,
                    actor=actor,
                    comment=comment,
                    metadata=metadata,
                )
                transition = audit.to_dto()

        self._logger.info(
            f"Record `{record_id}`: '{transition.from_state}' -> '{transition.to_state}' "
            f"via `{action}` by `{actor.id}`"
        )
        await self._notify(transition, rule, definition)
        return transition

    async def validate_transition(
        self,
        table: TableRef,
        record_id: UUID,
        definition: WorkflowDefinitionDTO,
        action: str,
        actor: ActorDTO,
        comment: str | None = None,
    ) -> TransitionRule:
        record = await self._tables.get_record(table, record_id)
        return self.check_transition(
            definition,
            record.current_state,
            action,
            comment=comment,
            permissions=actor.permissions,
        )

    async def get_history(self, record_id: UUID) -> list[TransitionRecordDTO]:
        with storage_errors(f"read history of record {record_id}"):
            transitions = await WorkflowTransitionDAO.filter(
                db_resource=self._db, submission_id=record_id
            )
            return [transition.to_dto() for transition in transitions]

    async def create_definition(
        self, dto: WorkflowDefinitionDTO
    ) -> WorkflowDefinitionDTO:
        existing = (
            await WorkflowDefinitionDAO.filter(db_resource=self._db, code=dto.code)
        ).first()
        if existing is not None:
            raise ConflictException(f"Workflow `{dto.code}` already exists")

        definition = WorkflowDefinitionDAO(
            code=dto.code,
            name=dto.name,
            description=dto.description,
            initial_state=dto.initial_state,
            states=[state.model_dump() for state in dto.states],
            transitions=dto.transitions_payload(),
        )
        with storage_errors(f"create workflow {dto.code}"):
            await definition.save(self._db)

        self._logger.info(
            f"Created workflow `{dto.code}` with {len(dto.transitions)} transitions"
        )
        return definition.to_dto()

    async def get_definition(self, workflow_id: UUID) -> WorkflowDefinitionDTO:
        definition = (
            await WorkflowDefinitionDAO.filter(
                db_resource=self._db, id=workflow_id, is_active=True
            )
        ).first()
        if definition is None:
            raise NotFoundException(f"Workflow `{workflow_id}` not found or inactive")
        return definition.to_dto()

    async def _append_transition(
        self,
        session: AsyncSession,
        *,
        record_id: UUID,
        rule: TransitionRule,
        actor: ActorDTO,
        comment: str | None,
        metadata: dict[str, Any] | None,
    ) -> WorkflowTransitionDAO:
        audit = WorkflowTransitionDAO(
            submission_id=record_id,
            from_state=rule.from_state,
            to_state=rule.to_state,
            action=rule.action,
            actor_id=actor.id,
            actor_name=actor.name,
            actor_role=actor.role,
            comment=comment,
            transition_metadata=metadata or {},
        )
        session.add(audit)
        await session.flush()
        return audit

    async def _notify(
        self,
        transition: TransitionRecordDTO,
        rule: TransitionRule,
        definition: WorkflowDefinitionDTO,
    ) -> None:
        if self._notifier is None:
            return

        try:
            await self._notifier.notify(transition, rule, definition)
        except Exception:
            # The transition is already committed
            self._logger.exception(
                f"Notification for record `{transition.submission_id}` failed"
            )

    @staticmethod
    def _has_permission(required: str, permissions: Iterable[str]) -> bool:
        held = set(permissions)
        return required in held or settings.UNIVERSAL_PERMISSION in held
