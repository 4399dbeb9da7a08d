from logging import Logger

from dependency_injector import containers, providers

from core.environment import settings
from core.database import SQLDatabase
from core.logger import app_logger
from service.dynamic_table import DynamicTableManager
from service.forms import FormService
from service.namespace import NamespaceManager
from service.notifications import LoggingNotifier
from service.schema_inference import SchemaInference
from service.workflow import WorkflowEngine


class DependencyContainer(containers.DeclarativeContainer):
    # Resources/Singletons
    logger: Logger = providers.Object(app_logger)
    pg_database = providers.Resource(
        SQLDatabase,
        db_config=settings.PG_DB_CONFIG,
        logger=logger,
    )
    notifier = providers.Singleton(LoggingNotifier, logger=logger)

    # Factories
    namespace_manager_factory = providers.Factory(
        NamespaceManager,
        pg_database=pg_database,
        logger=logger,
    )

    schema_inference_factory = providers.Factory(
        SchemaInference,
        long_text_threshold=settings.LONG_TEXT_THRESHOLD,
        logger=logger,
    )

    table_manager_factory = providers.Factory(
        DynamicTableManager,
        pg_database=pg_database,
        logger=logger,
    )

    workflow_engine_factory = providers.Factory(
        WorkflowEngine,
        pg_database=pg_database,
        table_manager=table_manager_factory,
        notifier=notifier,
        logger=logger,
    )

    form_service_factory = providers.Factory(
        FormService,
        pg_database=pg_database,
        namespace_manager=namespace_manager_factory,
        schema_inference=schema_inference_factory,
        table_manager=table_manager_factory,
        workflow_engine=workflow_engine_factory,
        logger=logger,
    )
