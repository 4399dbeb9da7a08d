from logging import Logger
from typing import Any, Mapping
from uuid import UUID

from core.database import SQLDatabase, storage_errors
from core.environment import settings
from core.exceptions import (
    ConflictException,
    FormFlowServiceException,
    NotFoundException,
    RecordNotEditableException,
    ValidationException,
)
from core.logger import app_logger
from core.utils import generate_table_name, is_default_namespace
from model.dao.enums import ProvisionStatus
from model.dao.forms import AppFormDAO, ModuleDAO
from model.dto.dynamic_table import DynamicRecord, RecordContext, TableRef
from model.dto.forms import (
    AppFormDTO,
    FieldSpec,
    FormBlueprint,
    FormCreateDTO,
    ModuleDTO,
    TableProvisionResultDTO,
    TableStatusDTO,
)
from model.dto.workflow import (
    ActorDTO,
    TransitionRecordDTO,
    TransitionRule,
    WorkflowActionDTO,
    WorkflowDefinitionDTO,
)
from service.dynamic_table import DynamicTableManager
from service.namespace import NamespaceManager
from service.schema_inference import SchemaInference
from service.workflow import WorkflowEngine


class FormService:
    def __init__(
        self,
        pg_database: SQLDatabase,
        namespace_manager: NamespaceManager,
        schema_inference: SchemaInference,
        table_manager: DynamicTableManager,
        workflow_engine: WorkflowEngine,
        logger: Logger = app_logger,
    ):
        self._db = pg_database
        self._namespaces = namespace_manager
        self._inference = schema_inference
        self._tables = table_manager
        self._workflows = workflow_engine
        self._logger = logger

    async def create_module(self, code: str, name: str) -> ModuleDTO:
        schema_name = self._namespaces.generate_namespace_name(code)

        existing = (await ModuleDAO.filter(db_resource=self._db, code=code)).first()
        if existing is not None:
            raise ConflictException(f"Module `{code}` already exists")

        await self._namespaces.ensure_namespace(schema_name)

        module = ModuleDAO(code=code, name=name, schema_name=schema_name)
        with storage_errors(f"create module {code}"):
            await module.save(self._db)

        self._logger.info(f"Created module `{code}` in namespace `{schema_name}`")
        return module.to_dto()

    async def create_form(self, dto: FormCreateDTO, actor_id: str) -> AppFormDTO:
        """Register a form and, when its blueprint declares fields, its table."""
        table_name = generate_table_name(dto.code)

        existing = (await AppFormDAO.filter(db_resource=self._db, code=dto.code)).first()
        if existing is not None:
            raise ConflictException(f"Form `{dto.code}` already exists")

        if dto.module_id is not None:
            await self._get_module(dto.module_id)
        if dto.workflow_id is not None:
            await self._workflows.get_definition(dto.workflow_id)

        # Fail on a malformed blueprint before anything is persisted
        fields = self._inference.resolve_fields(
            form_schema=dto.form_schema, steps=dto.steps
        )

        form = AppFormDAO(
            code=dto.code,
            title=dto.title,
            description=dto.description,
            module_id=dto.module_id,
            form_schema=dto.form_schema,
            steps=dto.steps,
            workflow_id=dto.workflow_id,
            initial_state=dto.initial_state,
            db_table_name=table_name,
            created_by=actor_id,
        )
        with storage_errors(f"create form {dto.code}"):
            await form.save(self._db)
        self._logger.info(f"Created form `{dto.code}`")

        if fields:
            await self._create_form_table(form, fields)
        return form.to_dto()

    async def provision_table(
        self,
        form_code: str,
        *,
        inferred: list[FieldSpec] | Any = None,
        sample: Mapping[str, Any] | None = None,
    ) -> TableRef:
        form = await self._get_form(form_code)
        fields = self._inference.resolve_fields(
            inferred=inferred,
            form_schema=form.form_schema,
            steps=form.steps,
            sample=sample,
        )
        return await self._create_form_table(form, fields)

    async def bulk_provision_tables(self) -> list[TableProvisionResultDTO]:
        forms = (
            await AppFormDAO.filter(db_resource=self._db, is_active=True)
        ).all()

        results = []
        for form in forms:
            table_name = form.db_table_name or None
            try:
                namespace = await self._form_namespace(form)
                if table_name and await self._tables.table_exists(namespace, table_name):
                    status, message = ProvisionStatus.SKIPPED, "table already exists"
                else:
                    ref = await self.provision_table(form.code)
                    table_name = ref.name
                    status, message = ProvisionStatus.CREATED, "table created successfully"
            except FormFlowServiceException as exc:
                self._logger.error(f"Provisioning table for form `{form.code}` failed: {exc}")
                status, message = ProvisionStatus.ERROR, exc.message

            results.append(
                TableProvisionResultDTO(
                    form_code=form.code,
                    table_name=table_name,
                    status=status,
                    message=message,
                )
            )

        self._logger.info(f"Bulk table provisioning completed for {len(results)} forms")
        return results

    async def table_status(self, form_code: str) -> TableStatusDTO:
        form = await self._get_form(form_code)
        namespace = await self._form_namespace(form)

        exists = False
        if form.db_table_name:
            exists = await self._tables.table_exists(namespace, form.db_table_name)

        return TableStatusDTO(
            form_code=form.code,
            table_name=form.db_table_name,
            namespace=namespace,
            has_table_name=bool(form.db_table_name),
            table_exists=exists,
        )

    async def drop_form_table(self, form_code: str, confirm: bool = False) -> TableRef:
        form = await self._get_form(form_code)
        if not form.db_table_name:
            raise ValidationException(f"Form `{form_code}` has no table name configured")
        if not confirm:
            raise ValidationException(
                f"Dropping the table of form `{form_code}` requires confirmation"
            )

        ref = await self._table_ref(form)
        await self._tables.drop_table(ref)
        return ref

    async def create_submission(
        self,
        form_code: str,
        business_vertical_id: UUID,
        data: Mapping[str, Any],
        actor_id: str,
        site_id: UUID | None = None,
    ) -> DynamicRecord:
        form = await self._get_form(form_code)
        if not form.is_active:
            raise ValidationException(f"Form `{form_code}` is not active")

        workflow = await self._get_workflow(form)
        ref = await self._table_ref(form)
        if not await self._tables.table_exists(ref.namespace, ref.name):
            self._logger.info(f"Table for form `{form_code}` missing, creating it")
            ref = await self.provision_table(form_code, sample=data)

        context = RecordContext(
            form_id=form.id,
            form_code=form.code,
            business_vertical_id=business_vertical_id,
            site_id=site_id,
            workflow_id=form.workflow_id,
            initial_state=self._initial_state(form, workflow),
        )
        record_id = await self._tables.insert_record(ref, context, data, actor_id)
        return await self._tables.get_record(ref, record_id)

    async def update_submission(
        self,
        form_code: str,
        record_id: UUID,
        data: Mapping[str, Any],
        actor_id: str,
    ) -> DynamicRecord:
        """Edit a submission's content; only allowed before it enters the workflow."""
        form = await self._get_form(form_code)
        workflow = await self._get_workflow(form)
        ref = await self._table_ref(form)
        editable_states = {
            settings.DEFAULT_WORKFLOW_STATE,
            self._initial_state(form, workflow),
        }

        with storage_errors(f"update submission {record_id}"):
            async with self._db.transaction() as session:
                record = await self._tables.get_record(ref, record_id, session=session)
                if record.current_state not in editable_states:
                    raise RecordNotEditableException(record_id, record.current_state)
                await self._tables.update_record(
                    ref, record_id, data, actor_id, session=session
                )

        return await self._tables.get_record(ref, record_id)

    async def get_submission(self, form_code: str, record_id: UUID) -> DynamicRecord:
        form = await self._get_form(form_code)
        return await self._tables.get_record(await self._table_ref(form), record_id)

    async def list_submissions(
        self,
        form_code: str,
        business_vertical_id: UUID,
        filters: Mapping[str, Any] | None = None,
    ) -> list[DynamicRecord]:
        form = await self._get_form(form_code)
        return await self._tables.list_records(
            await self._table_ref(form), business_vertical_id, filters
        )

    async def delete_submission(
        self, form_code: str, record_id: UUID, actor_id: str
    ) -> bool:
        form = await self._get_form(form_code)
        return await self._tables.soft_delete(
            await self._table_ref(form), record_id, actor_id
        )

    async def transition_submission(
        self,
        form_code: str,
        record_id: UUID,
        action: str,
        actor: ActorDTO,
        comment: str | None = None,
        metadata: dict[str, Any] | None = None,
        expected_state: str | None = None,
    ) -> TransitionRecordDTO:
        form = await self._get_form(form_code)
        workflow = await self._require_workflow(form)
        return await self._workflows.transition(
            await self._table_ref(form),
            record_id,
            workflow,
            action,
            actor,
            comment=comment,
            metadata=metadata,
            expected_state=expected_state,
        )

    async def validate_transition(
        self,
        form_code: str,
        record_id: UUID,
        action: str,
        actor: ActorDTO,
        comment: str | None = None,
    ) -> TransitionRule:
        form = await self._get_form(form_code)
        workflow = await self._require_workflow(form)
        return await self._workflows.validate_transition(
            await self._table_ref(form), record_id, workflow, action, actor, comment
        )

    async def get_history(self, record_id: UUID) -> list[TransitionRecordDTO]:
        return await self._workflows.get_history(record_id)

    async def workflow_stats(
        self, form_code: str, business_vertical_id: UUID
    ) -> dict[str, int]:
        """Live submissions of a form per workflow state, empty before the first one."""
        form = await self._get_form(form_code)
        ref = await self._table_ref(form)
        if not await self._tables.table_exists(ref.namespace, ref.name):
            return {}
        return await self._tables.state_counts(ref, business_vertical_id)

    async def available_actions(
        self, form_code: str, record_id: UUID, actor: ActorDTO
    ) -> list[WorkflowActionDTO]:
        form = await self._get_form(form_code)
        workflow = await self._get_workflow(form)
        if workflow is None:
            return []

        record = await self._tables.get_record(await self._table_ref(form), record_id)
        return self._workflows.available_actions(
            workflow, record.current_state, actor.permissions
        )

    async def _get_form(self, form_code: str) -> AppFormDAO:
        form = (await AppFormDAO.filter(db_resource=self._db, code=form_code)).first()
        if form is None:
            raise NotFoundException(f"Form `{form_code}` not found")
        return form

    async def _get_module(self, module_id: UUID) -> ModuleDAO:
        module = await ModuleDAO.get(module_id, db_resource=self._db)
        if module is None:
            raise NotFoundException(f"Module `{module_id}` not found")
        return module

    async def _get_workflow(self, form: AppFormDAO) -> WorkflowDefinitionDTO | None:
        if form.workflow_id is None:
            return None
        try:
            return await self._workflows.get_definition(form.workflow_id)
        except NotFoundException:
            # A deactivated workflow detaches from its forms
            self._logger.warning(
                f"Workflow `{form.workflow_id}` of form `{form.code}` is unavailable"
            )
            return None

    async def _require_workflow(self, form: AppFormDAO) -> WorkflowDefinitionDTO:
        workflow = await self._get_workflow(form)
        if workflow is None:
            raise ValidationException(f"Form `{form.code}` has no workflow attached")
        return workflow

    async def _form_namespace(self, form: AppFormDAO) -> str | None:
        if form.module_id is None:
            return None
        return (await self._get_module(form.module_id)).schema_name

    async def _table_ref(self, form: AppFormDAO) -> TableRef:
        return TableRef(
            name=form.db_table_name or generate_table_name(form.code),
            namespace=await self._form_namespace(form),
        )

    async def _create_form_table(
        self, form: AppFormDAO, fields: list[FieldSpec]
    ) -> TableRef:
        namespace = await self._form_namespace(form)
        if not is_default_namespace(namespace):
            await self._namespaces.ensure_namespace(namespace)

        ref = await self._tables.create_table(
            FormBlueprint(
                code=form.code,
                namespace=namespace,
                fields=fields,
                form_id=form.id,
                workflow_id=form.workflow_id,
            )
        )

        if form.db_table_name != ref.name:
            form.db_table_name = ref.name
            with storage_errors(f"update form {form.code}"):
                await form.save(self._db)
        return ref

    @staticmethod
    def _initial_state(
        form: AppFormDAO, workflow: WorkflowDefinitionDTO | None
    ) -> str:
        if workflow is not None and workflow.initial_state:
            return workflow.initial_state
        return form.initial_state or settings.DEFAULT_WORKFLOW_STATE
