from enum import StrEnum


class FieldType(StrEnum):
    SHORT_TEXT = "short_text"
    LONG_TEXT = "long_text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    BOOLEAN = "boolean"
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    FILE_REFERENCE = "file_reference"
    JSON = "json"

    @classmethod
    def from_alias(cls, value: str) -> "FieldType | None":
        """Resolve a form-builder type name (``textarea``, ``radio``...)."""
        key = value.strip().lower()
        if key in cls._value2member_map_:
            return cls(key)
        return FIELD_TYPE_ALIASES.get(key)


FIELD_TYPE_ALIASES: dict[str, FieldType] = {
    "text": FieldType.SHORT_TEXT,
    "email": FieldType.SHORT_TEXT,
    "url": FieldType.SHORT_TEXT,
    "phone": FieldType.SHORT_TEXT,
    "textarea": FieldType.LONG_TEXT,
    "number": FieldType.INTEGER,
    "decimal": FieldType.DECIMAL,
    "currency": FieldType.DECIMAL,
    "timestamp": FieldType.DATETIME,
    "checkbox": FieldType.BOOLEAN,
    "select": FieldType.SINGLE_CHOICE,
    "radio": FieldType.SINGLE_CHOICE,
    "multiselect": FieldType.MULTI_CHOICE,
    "checkbox_group": FieldType.MULTI_CHOICE,
    "file": FieldType.FILE_REFERENCE,
    "image": FieldType.FILE_REFERENCE,
    "object": FieldType.JSON,
}


class ProvisionStatus(StrEnum):
    CREATED = "created"
    SKIPPED = "skipped"
    ERROR = "error"
