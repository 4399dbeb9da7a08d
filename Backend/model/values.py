"""Tagged value kinds carried from inference through DDL to parameter binding.

Submission payloads arrive as untyped JSON-ish mappings. Every value bound
into a dynamic table is first coerced according to the kind of the column it
targets, so that an ISO date string lands in a DATE column as a ``date``, a
numeric string in a DECIMAL column as a ``Decimal`` and so on.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any
from uuid import UUID

from sqlalchemy import types as sqltypes

from core.exceptions import ValidationException
from model.dao.enums import FieldType


class ValueKind(StrEnum):
    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    JSON = "json"
    UUID = "uuid"


_FIELD_TYPE_KINDS: dict[FieldType, ValueKind] = {
    FieldType.SHORT_TEXT: ValueKind.TEXT,
    FieldType.LONG_TEXT: ValueKind.TEXT,
    FieldType.INTEGER: ValueKind.INTEGER,
    FieldType.DECIMAL: ValueKind.DECIMAL,
    FieldType.DATE: ValueKind.DATE,
    FieldType.DATETIME: ValueKind.DATETIME,
    FieldType.TIME: ValueKind.TIME,
    FieldType.BOOLEAN: ValueKind.BOOLEAN,
    FieldType.SINGLE_CHOICE: ValueKind.TEXT,
    FieldType.MULTI_CHOICE: ValueKind.JSON,
    FieldType.FILE_REFERENCE: ValueKind.TEXT,
    FieldType.JSON: ValueKind.JSON,
}

_TRUE_STRINGS = {"true", "t", "yes", "y", "1", "on"}
_FALSE_STRINGS = {"false", "f", "no", "n", "0", "off"}


def kind_for_field_type(field_type: FieldType) -> ValueKind:
    return _FIELD_TYPE_KINDS[field_type]


def kind_for_sql_type(sql_type: sqltypes.TypeEngine) -> ValueKind:
    """Map a (possibly reflected) column type to its value kind."""
    # Order matters: Boolean and Integer are not Numeric, DateTime is not Date
    if isinstance(sql_type, sqltypes.Boolean):
        return ValueKind.BOOLEAN
    if isinstance(sql_type, sqltypes.DateTime):
        return ValueKind.DATETIME
    if isinstance(sql_type, sqltypes.Date):
        return ValueKind.DATE
    if isinstance(sql_type, sqltypes.Time):
        return ValueKind.TIME
    if isinstance(sql_type, sqltypes.Uuid):
        return ValueKind.UUID
    if isinstance(sql_type, sqltypes.Integer):
        return ValueKind.INTEGER
    if isinstance(sql_type, sqltypes.Numeric):
        return ValueKind.DECIMAL
    if isinstance(sql_type, sqltypes.JSON):
        return ValueKind.JSON
    return ValueKind.TEXT


def coerce_value(kind: ValueKind, value: Any, field: str = "value") -> Any:
    """Convert ``value`` to the Python type bound for ``kind``.

    ``None`` passes through unchanged. Raises `ValidationException` naming
    ``field`` when the value cannot represent the kind.
    """
    if value is None:
        return None

    try:
        return _COERCERS[kind](value)
    except (TypeError, ValueError, InvalidOperation, OverflowError) as exc:
        raise ValidationException(
            f"Invalid {kind} value for `{field}`: {value!r}"
        ) from exc


def _to_text(value: Any) -> str:
    if isinstance(value, (dict, list, tuple, set)):
        raise TypeError("structured value for text column")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _to_integer(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("boolean for integer column")
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        if value != int(value):
            raise ValueError("non-integral number")
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise TypeError(f"unsupported type {type(value).__name__}")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise TypeError("boolean for decimal column")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        # via str to avoid binary float artifacts
        return Decimal(str(value))
    if isinstance(value, str):
        return Decimal(value.strip())
    raise TypeError(f"unsupported type {type(value).__name__}")


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError("not a boolean")


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if "T" in text:
            return datetime.fromisoformat(text).date()
        return date.fromisoformat(text)
    raise TypeError(f"unsupported type {type(value).__name__}")


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip())
    else:
        raise TypeError(f"unsupported type {type(value).__name__}")

    # Columns store naive UTC timestamps
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _to_time(value: Any) -> time:
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        return time.fromisoformat(value.strip())
    raise TypeError(f"unsupported type {type(value).__name__}")


def _to_json(value: Any) -> Any:
    if isinstance(value, (set, tuple)):
        return list(value)
    return value


def _to_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    if isinstance(value, str):
        return UUID(value.strip())
    raise TypeError(f"unsupported type {type(value).__name__}")


_COERCERS = {
    ValueKind.TEXT: _to_text,
    ValueKind.INTEGER: _to_integer,
    ValueKind.DECIMAL: _to_decimal,
    ValueKind.BOOLEAN: _to_boolean,
    ValueKind.DATE: _to_date,
    ValueKind.DATETIME: _to_datetime,
    ValueKind.TIME: _to_time,
    ValueKind.JSON: _to_json,
    ValueKind.UUID: _to_uuid,
}
