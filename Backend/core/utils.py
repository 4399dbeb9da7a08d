import re
from datetime import UTC, datetime

from core.constants import DEFAULT_NAMESPACE, MAX_IDENTIFIER_LENGTH
from core.exceptions import ValidationException


_SEPARATORS = re.compile(r"[ \-]")
_DISALLOWED = re.compile(r"[^a-z0-9_]")


def naive_utc_now():
    return datetime.now(UTC).replace(tzinfo=None)


def sanitize_identifier(value: str) -> str:
    """Derive a lowercase SQL identifier from free-form text.

    Spaces and hyphens become underscores, every other character outside
    ``[a-z0-9_]`` is dropped, a leading digit is prefixed with an underscore
    and the result is truncated to the PostgreSQL identifier limit. The
    result may be empty; callers decide whether that is an error.
    """
    name = _SEPARATORS.sub("_", value.lower())
    name = _DISALLOWED.sub("", name)

    if name and name[0].isdigit():
        name = "_" + name

    return name[:MAX_IDENTIFIER_LENGTH]


def generate_table_name(form_code: str) -> str:
    name = sanitize_identifier(form_code)
    if not name:
        raise ValidationException(
            f"Form code `{form_code}` does not yield a valid table name"
        )
    return name


def is_default_namespace(namespace: str | None) -> bool:
    return not namespace or namespace == DEFAULT_NAMESPACE


def qualify_table_name(namespace: str | None, table: str) -> str:
    if is_default_namespace(namespace):
        return table
    return f"{namespace}.{table}"
