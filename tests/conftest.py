"""Shared fixtures backed by a temporary SQLite database."""

from pathlib import Path
from uuid import UUID

import pytest

from core.database import SQLDatabase
from core.environment import SQLConfig
from model.dao.organization import BusinessVerticalDAO
from model.dto.dynamic_table import RecordContext, TableRef
from model.dto.forms import FieldSpec, FormBlueprint
from model.dto.workflow import ActorDTO, WorkflowDefinitionDTO
from service.dynamic_table import DynamicTableManager
from service.namespace import NamespaceManager
from service.schema_inference import SchemaInference
from service.workflow import WorkflowEngine
from service.forms import FormService


@pytest.fixture
async def pg_database(tmp_path: Path) -> SQLDatabase:
    """A file-backed SQLite database with the static tables created."""
    db_config = SQLConfig(
        driver="sqlite+aiosqlite",
        database=str(tmp_path / "formflow.db"),
    )
    database = await SQLDatabase().init(db_config)
    await database.initialize_schema()
    yield database
    await database.shutdown(None)


@pytest.fixture
async def business_vertical_id(pg_database: SQLDatabase) -> UUID:
    vertical = BusinessVerticalDAO(code="ops", name="Operations")
    await vertical.save(pg_database)
    return vertical.id


@pytest.fixture
def table_manager(pg_database: SQLDatabase) -> DynamicTableManager:
    return DynamicTableManager(pg_database=pg_database)


@pytest.fixture
def workflow_engine(
    pg_database: SQLDatabase, table_manager: DynamicTableManager
) -> WorkflowEngine:
    return WorkflowEngine(pg_database=pg_database, table_manager=table_manager)


@pytest.fixture
def form_service(
    pg_database: SQLDatabase,
    table_manager: DynamicTableManager,
    workflow_engine: WorkflowEngine,
) -> FormService:
    return FormService(
        pg_database=pg_database,
        namespace_manager=NamespaceManager(pg_database=pg_database),
        schema_inference=SchemaInference(),
        table_manager=table_manager,
        workflow_engine=workflow_engine,
    )


@pytest.fixture
def review_workflow() -> WorkflowDefinitionDTO:
    """draft -submit-> review -approve-> done, review -reject-> draft."""
    return WorkflowDefinitionDTO.parse(
        {
            "code": "site_review",
            "name": "Site review",
            "initial_state": "draft",
            "states": ["draft", "review", "done"],
            "transitions": [
                {"from": "draft", "action": "submit", "to": "review"},
                {"from": "review", "action": "approve", "to": "done"},
                {
                    "from": "review",
                    "action": "reject",
                    "to": "draft",
                    "requires_comment": True,
                },
            ],
        }
    )


@pytest.fixture
def actor() -> ActorDTO:
    return ActorDTO(id="user-1", name="Ada Lovelace", role="supervisor")


@pytest.fixture
async def visit_table(table_manager: DynamicTableManager) -> TableRef:
    blueprint = FormBlueprint(
        code="Site Visit",
        fields=[
            FieldSpec(name="Inspector Name", type="text", required=True),
            FieldSpec(name="score", type="number"),
            FieldSpec(name="notes", type="textarea"),
        ],
    )
    return await table_manager.create_table(blueprint)


@pytest.fixture
def record_context(business_vertical_id: UUID) -> RecordContext:
    return RecordContext(
        form_id=UUID("00000000-0000-0000-0000-00000000f001"),
        form_code="Site Visit",
        business_vertical_id=business_vertical_id,
    )
