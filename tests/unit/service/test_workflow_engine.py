import asyncio
from uuid import UUID, uuid4

import pytest
from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import (
    CommentRequiredException,
    ConcurrentModificationException,
    ConflictException,
    InvalidTransitionException,
    NotFoundException,
    PermissionDeniedException,
    StorageException,
)
from model.dao.workflow import WorkflowDefinitionDAO
from model.dto.dynamic_table import RecordContext, TableRef
from model.dto.workflow import ActorDTO, WorkflowDefinitionDTO
from service.dynamic_table import DynamicTableManager
from service.workflow import WorkflowEngine


@pytest.fixture
async def record_id(
    table_manager: DynamicTableManager,
    visit_table: TableRef,
    record_context: RecordContext,
) -> UUID:
    return await table_manager.insert_record(
        visit_table, record_context, {"inspector_name": "Ada", "score": 4}, "user-1"
    )


@pytest.fixture
def guarded_workflow() -> WorkflowDefinitionDTO:
    return WorkflowDefinitionDTO.parse(
        {
            "code": "guarded",
            "transitions": [
                {"from": "draft", "action": "submit", "to": "review"},
                {
                    "from": "draft",
                    "action": "publish",
                    "to": "published",
                    "permission": "forms:publish",
                    "label": "Publish now",
                },
            ],
        }
    )


async def _state(table_manager: DynamicTableManager, table: TableRef, record_id: UUID) -> str:
    return (await table_manager.get_record(table, record_id)).current_state


class TestCheckTransition:
    def test_returns_matching_rule(
        self, workflow_engine: WorkflowEngine, review_workflow: WorkflowDefinitionDTO
    ) -> None:
        rule = workflow_engine.check_transition(review_workflow, "draft", "submit")
        assert rule.to_state == "review"

    def test_unknown_action_is_invalid(
        self, workflow_engine: WorkflowEngine, review_workflow: WorkflowDefinitionDTO
    ) -> None:
        with pytest.raises(InvalidTransitionException) as exc_info:
            workflow_engine.check_transition(review_workflow, "draft", "approve")

        assert exc_info.value.current_state == "draft"
        assert exc_info.value.action == "approve"
        assert "invalid transition" in str(exc_info.value)

    @pytest.mark.parametrize("comment", [None, "", "   "])
    def test_blank_comment_is_rejected(
        self,
        workflow_engine: WorkflowEngine,
        review_workflow: WorkflowDefinitionDTO,
        comment: str | None,
    ) -> None:
        with pytest.raises(CommentRequiredException):
            workflow_engine.check_transition(
                review_workflow, "review", "reject", comment=comment
            )

    def test_permission_is_enforced(
        self, workflow_engine: WorkflowEngine, guarded_workflow: WorkflowDefinitionDTO
    ) -> None:
        with pytest.raises(PermissionDeniedException) as exc_info:
            workflow_engine.check_transition(
                guarded_workflow, "draft", "publish", permissions=["forms:submit"]
            )
        assert exc_info.value.permission == "forms:publish"

        workflow_engine.check_transition(
            guarded_workflow, "draft", "publish", permissions=["forms:publish"]
        )
        workflow_engine.check_transition(
            guarded_workflow, "draft", "publish", permissions=["admin_all"]
        )


class TestAvailableActions:
    def test_lists_actions_leaving_state(
        self, workflow_engine: WorkflowEngine, guarded_workflow: WorkflowDefinitionDTO
    ) -> None:
        actions = workflow_engine.available_actions(guarded_workflow, "draft")

        assert [(action.action, action.label, action.to_state) for action in actions] == [
            ("submit", "submit", "review"),
            ("publish", "Publish now", "published"),
        ]
        assert workflow_engine.available_actions(guarded_workflow, "published") == []

    def test_filters_by_permissions_when_given(
        self, workflow_engine: WorkflowEngine, guarded_workflow: WorkflowDefinitionDTO
    ) -> None:
        actions = workflow_engine.available_actions(guarded_workflow, "draft", [])
        assert [action.action for action in actions] == ["submit"]

        actions = workflow_engine.available_actions(guarded_workflow, "draft", ["admin_all"])
        assert [action.action for action in actions] == ["submit", "publish"]

    def test_reports_comment_requirement(
        self, workflow_engine: WorkflowEngine, review_workflow: WorkflowDefinitionDTO
    ) -> None:
        actions = {
            action.action: action
            for action in workflow_engine.available_actions(review_workflow, "review")
        }
        assert actions["reject"].requires_comment is True
        assert actions["approve"].requires_comment is False


class TestTransition:
    async def test_submit_moves_record_and_records_history(
        self,
        workflow_engine: WorkflowEngine,
        table_manager: DynamicTableManager,
        visit_table: TableRef,
        record_id: UUID,
        review_workflow: WorkflowDefinitionDTO,
        actor: ActorDTO,
    ) -> None:
        transition = await workflow_engine.transition(
            visit_table,
            record_id,
            review_workflow,
            "submit",
            actor,
            comment="ready",
            metadata={"source": "mobile"},
        )

        assert (transition.from_state, transition.to_state) == ("draft", "review")
        assert transition.actor_name == "Ada Lovelace"
        assert await _state(table_manager, visit_table, record_id) == "review"

        (entry,) = await workflow_engine.get_history(record_id)
        assert entry.id == transition.id
        assert entry.action == "submit"
        assert entry.actor_id == "user-1"
        assert entry.actor_role == "supervisor"
        assert entry.comment == "ready"
        assert entry.metadata == {"source": "mobile"}

    async def test_history_is_chronological(
        self,
        workflow_engine: WorkflowEngine,
        visit_table: TableRef,
        record_id: UUID,
        review_workflow: WorkflowDefinitionDTO,
        actor: ActorDTO,
    ) -> None:
        await workflow_engine.transition(visit_table, record_id, review_workflow, "submit", actor)
        await workflow_engine.transition(
            visit_table, record_id, review_workflow, "reject", actor, comment="missing photo"
        )
        await workflow_engine.transition(visit_table, record_id, review_workflow, "submit", actor)

        history = await workflow_engine.get_history(record_id)

        assert [entry.action for entry in history] == ["submit", "reject", "submit"]

    async def test_invalid_action_leaves_record_untouched(
        self,
        workflow_engine: WorkflowEngine,
        table_manager: DynamicTableManager,
        visit_table: TableRef,
        record_id: UUID,
        review_workflow: WorkflowDefinitionDTO,
        actor: ActorDTO,
    ) -> None:
        with pytest.raises(InvalidTransitionException):
            await workflow_engine.transition(
                visit_table, record_id, review_workflow, "approve", actor
            )

        assert await _state(table_manager, visit_table, record_id) == "draft"
        assert await workflow_engine.get_history(record_id) == []

    async def test_missing_comment_keeps_state(
        self,
        workflow_engine: WorkflowEngine,
        table_manager: DynamicTableManager,
        visit_table: TableRef,
        record_id: UUID,
        review_workflow: WorkflowDefinitionDTO,
        actor: ActorDTO,
    ) -> None:
        await workflow_engine.transition(visit_table, record_id, review_workflow, "submit", actor)

        with pytest.raises(CommentRequiredException):
            await workflow_engine.transition(
                visit_table, record_id, review_workflow, "reject", actor
            )

        assert await _state(table_manager, visit_table, record_id) == "review"
        assert len(await workflow_engine.get_history(record_id)) == 1

    async def test_permission_denied(
        self,
        workflow_engine: WorkflowEngine,
        visit_table: TableRef,
        record_id: UUID,
        guarded_workflow: WorkflowDefinitionDTO,
        actor: ActorDTO,
    ) -> None:
        with pytest.raises(PermissionDeniedException):
            await workflow_engine.transition(
                visit_table, record_id, guarded_workflow, "publish", actor
            )

        admin = actor.model_copy(update={"permissions": ["admin_all"]})
        transition = await workflow_engine.transition(
            visit_table, record_id, guarded_workflow, "publish", admin
        )
        assert transition.to_state == "published"

    async def test_unknown_record_is_not_found(
        self,
        workflow_engine: WorkflowEngine,
        visit_table: TableRef,
        review_workflow: WorkflowDefinitionDTO,
        actor: ActorDTO,
    ) -> None:
        with pytest.raises(NotFoundException):
            await workflow_engine.transition(
                visit_table, uuid4(), review_workflow, "submit", actor
            )

    async def test_validate_transition_does_not_write(
        self,
        workflow_engine: WorkflowEngine,
        table_manager: DynamicTableManager,
        visit_table: TableRef,
        record_id: UUID,
        review_workflow: WorkflowDefinitionDTO,
        actor: ActorDTO,
    ) -> None:
        rule = await workflow_engine.validate_transition(
            visit_table, record_id, review_workflow, "submit", actor
        )

        assert rule.to_state == "review"
        assert await _state(table_manager, visit_table, record_id) == "draft"
        assert await workflow_engine.get_history(record_id) == []


class TestConcurrency:
    async def test_stale_expected_state_is_rejected(
        self,
        workflow_engine: WorkflowEngine,
        visit_table: TableRef,
        record_id: UUID,
        review_workflow: WorkflowDefinitionDTO,
        actor: ActorDTO,
    ) -> None:
        await workflow_engine.transition(visit_table, record_id, review_workflow, "submit", actor)

        with pytest.raises(ConcurrentModificationException) as exc_info:
            await workflow_engine.transition(
                visit_table,
                record_id,
                review_workflow,
                "submit",
                actor,
                expected_state="draft",
            )

        assert exc_info.value.action == "submit"
        assert len(await workflow_engine.get_history(record_id)) == 1

    async def test_lost_update_is_detected_at_write_time(
        self,
        monkeypatch: pytest.MonkeyPatch,
        workflow_engine: WorkflowEngine,
        table_manager: DynamicTableManager,
        visit_table: TableRef,
        record_id: UUID,
        review_workflow: WorkflowDefinitionDTO,
        actor: ActorDTO,
    ) -> None:
        await workflow_engine.transition(visit_table, record_id, review_workflow, "submit", actor)

        # Another writer moved the record after this one read it
        read_record = table_manager.get_record

        async def stale_read(*args, **kwargs):
            record = await read_record(*args, **kwargs)
            return record.model_copy(update={"current_state": "draft"})

        monkeypatch.setattr(table_manager, "get_record", stale_read)

        with pytest.raises(ConcurrentModificationException) as exc_info:
            await workflow_engine.transition(
                visit_table, record_id, review_workflow, "submit", actor
            )

        monkeypatch.undo()
        assert exc_info.value.action == "submit"
        assert await _state(table_manager, visit_table, record_id) == "review"
        assert len(await workflow_engine.get_history(record_id)) == 1

    async def test_concurrent_transitions_apply_once(
        self,
        workflow_engine: WorkflowEngine,
        table_manager: DynamicTableManager,
        visit_table: TableRef,
        record_id: UUID,
        review_workflow: WorkflowDefinitionDTO,
        actor: ActorDTO,
    ) -> None:
        results = await asyncio.gather(
            *(
                workflow_engine.transition(
                    visit_table, record_id, review_workflow, "submit", actor
                )
                for _ in range(2)
            ),
            return_exceptions=True,
        )

        failures = [result for result in results if isinstance(result, Exception)]
        assert len(failures) == 1
        # SQLite may report the losing writer as a lock error instead
        assert isinstance(failures[0], (ConflictException, StorageException))
        assert await _state(table_manager, visit_table, record_id) == "review"
        assert len(await workflow_engine.get_history(record_id)) == 1

    async def test_audit_failure_rolls_back_state_change(
        self,
        monkeypatch: pytest.MonkeyPatch,
        workflow_engine: WorkflowEngine,
        table_manager: DynamicTableManager,
        visit_table: TableRef,
        record_id: UUID,
        review_workflow: WorkflowDefinitionDTO,
        actor: ActorDTO,
    ) -> None:
        async def failing_append(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(workflow_engine, "_append_transition", failing_append)

        with pytest.raises(StorageException, match="disk full"):
            await workflow_engine.transition(
                visit_table, record_id, review_workflow, "submit", actor
            )

        assert await _state(table_manager, visit_table, record_id) == "draft"
        assert await workflow_engine.get_history(record_id) == []


class TestDefinitions:
    async def test_create_and_get_definition(
        self, workflow_engine: WorkflowEngine, review_workflow: WorkflowDefinitionDTO
    ) -> None:
        created = await workflow_engine.create_definition(review_workflow)

        assert created.id is not None
        loaded = await workflow_engine.get_definition(created.id)
        assert loaded.code == "site_review"
        assert loaded.state_codes == {"draft", "review", "done"}
        assert loaded.transitions == review_workflow.transitions

    async def test_duplicate_code_conflicts(
        self, workflow_engine: WorkflowEngine, review_workflow: WorkflowDefinitionDTO
    ) -> None:
        await workflow_engine.create_definition(review_workflow)

        with pytest.raises(ConflictException):
            await workflow_engine.create_definition(review_workflow)

    async def test_inactive_definition_is_not_found(
        self,
        pg_database,
        workflow_engine: WorkflowEngine,
        review_workflow: WorkflowDefinitionDTO,
    ) -> None:
        created = await workflow_engine.create_definition(review_workflow)
        definition = await WorkflowDefinitionDAO.get(created.id, db_resource=pg_database)
        definition.is_active = False
        await definition.save(pg_database)

        with pytest.raises(NotFoundException, match="inactive"):
            await workflow_engine.get_definition(created.id)

    async def test_unknown_definition_is_not_found(
        self, workflow_engine: WorkflowEngine
    ) -> None:
        with pytest.raises(NotFoundException):
            await workflow_engine.get_definition(uuid4())
