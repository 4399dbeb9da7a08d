# PostgreSQL truncates identifiers beyond 63 bytes
MAX_IDENTIFIER_LENGTH = 63

DEFAULT_NAMESPACE = "public"

RESERVED_NAMESPACES = frozenset(
    {
        "public",
        "pg_catalog",
        "information_schema",
        "pg_toast",
        "pg_temp",
    }
)

WORKFLOW_TRANSITIONS_TABLE = "workflow_transitions"

# System-managed columns present on every dynamic form table, in DDL order
BASE_COLUMN_NAMES = (
    "id",
    "created_by",
    "created_at",
    "updated_by",
    "updated_at",
    "deleted_by",
    "deleted_at",
    "business_vertical_id",
    "site_id",
    "workflow_id",
    "current_state",
    "form_id",
    "form_code",
)

# Never written by a content update
READ_ONLY_COLUMNS = frozenset({"id", "created_by", "created_at"})

# Written only by state transitions and soft deletes
LIFECYCLE_COLUMNS = frozenset({"current_state", "deleted_by", "deleted_at"})
