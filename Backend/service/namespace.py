import re
from logging import Logger

from sqlalchemy import inspect
from sqlalchemy.schema import CreateSchema, DropSchema

from core.constants import MAX_IDENTIFIER_LENGTH, RESERVED_NAMESPACES
from core.database import SQLDatabase, storage_errors
from core.exceptions import ValidationException
from core.logger import app_logger
from core.utils import is_default_namespace, qualify_table_name, sanitize_identifier


_NAMESPACE_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")


class NamespaceManager:
    """Creates, inspects and drops the schemas that group a module's form tables."""

    def __init__(self, pg_database: SQLDatabase, logger: Logger = app_logger):
        self._db = pg_database
        self._logger = logger

    @staticmethod
    def validate_namespace_name(name: str) -> None:
        if not name:
            raise ValidationException("Namespace name cannot be empty")
        if len(name.encode()) > MAX_IDENTIFIER_LENGTH:
            raise ValidationException(
                f"Namespace `{name}` exceeds {MAX_IDENTIFIER_LENGTH} bytes"
            )
        if not _NAMESPACE_PATTERN.match(name):
            raise ValidationException(
                f"Invalid namespace `{name}`: must start with a letter or underscore "
                "and contain only lowercase letters, digits and underscores"
            )
        if name in RESERVED_NAMESPACES or name.startswith("pg_"):
            raise ValidationException(f"Namespace `{name}` is reserved")

    @staticmethod
    def generate_namespace_name(module_code: str) -> str:
        name = sanitize_identifier(module_code)
        NamespaceManager.validate_namespace_name(name)
        return name

    @staticmethod
    def qualified_name(namespace: str | None, table: str) -> str:
        return qualify_table_name(namespace, table)

    async def ensure_namespace(self, name: str) -> None:
        self.validate_namespace_name(name)

        self._logger.info(f"Creating namespace `{name}`")
        with storage_errors(f"create namespace {name}"):
            async with self._db.connect() as conn:
                await conn.execute(CreateSchema(name, if_not_exists=True))

    async def namespace_exists(self, name: str) -> bool:
        with storage_errors(f"inspect namespace {name}"):
            async with self._db.connect() as conn:
                return await conn.run_sync(
                    lambda sync_conn: inspect(sync_conn).has_schema(name)
                )

    async def drop_namespace(self, name: str, cascade: bool = False) -> None:
        self.validate_namespace_name(name)

        self._logger.warning(f"Dropping namespace `{name}` (cascade={cascade})")
        with storage_errors(f"drop namespace {name}"):
            async with self._db.connect() as conn:
                await conn.execute(DropSchema(name, cascade=cascade, if_exists=True))

    async def list_tables(self, name: str | None) -> list[str]:
        schema = None if is_default_namespace(name) else name
        with storage_errors(f"list tables in namespace {name}"):
            async with self._db.connect() as conn:
                tables = await conn.run_sync(
                    lambda sync_conn: inspect(sync_conn).get_table_names(schema=schema)
                )
        return sorted(tables)
