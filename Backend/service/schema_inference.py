import json
import re
from decimal import Decimal
from logging import Logger
from typing import Any, Mapping, Sequence

from pydantic import ValidationError

from core.constants import BASE_COLUMN_NAMES
from core.environment import settings
from core.exceptions import ValidationException
from core.logger import app_logger
from core.utils import sanitize_identifier
from model.dao.enums import FieldType
from model.dto.forms import FieldSpec


_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class SchemaInference:
    """Derives a form's field list from one of its schema sources.

    Sources, highest priority first: an explicit inferred-schema override,
    the form's JSON field-list blueprint, fields collected from its step
    structure, and finally a sample submission. Only the first source that
    yields any field is used.
    """

    def __init__(
        self,
        long_text_threshold: int = settings.LONG_TEXT_THRESHOLD,
        logger: Logger = app_logger,
    ):
        self._long_text_threshold = long_text_threshold
        self._logger = logger

    def infer_from_sample(self, data: Mapping[str, Any]) -> list[FieldSpec]:
        fields = []
        for name, value in data.items():
            if sanitize_identifier(name) in BASE_COLUMN_NAMES:
                continue

            field_type, field_format = self._infer_type(value)
            fields.append(
                FieldSpec(
                    name=name,
                    label=name,
                    type=field_type,
                    format=field_format,
                )
            )

        self._logger.debug(f"Inferred {len(fields)} fields from sample data")
        return fields

    def _infer_type(self, value: Any) -> tuple[FieldType, str | None]:
        # bool is an int subclass, check it first
        if isinstance(value, bool):
            return FieldType.BOOLEAN, None
        if isinstance(value, int):
            return FieldType.INTEGER, None
        if isinstance(value, float):
            integral = value.is_integer()
            return (FieldType.INTEGER if integral else FieldType.DECIMAL), None
        if isinstance(value, Decimal):
            integral = value.is_finite() and value == value.to_integral_value()
            return (FieldType.INTEGER if integral else FieldType.DECIMAL), None
        if isinstance(value, str):
            if _DATE_PATTERN.match(value):
                return FieldType.DATE, None
            if "T" in value and ":" in value:
                return FieldType.DATETIME, None
            if len(value) > self._long_text_threshold:
                return FieldType.LONG_TEXT, None
            if "@" in value and "." in value:
                return FieldType.SHORT_TEXT, "email"
            return FieldType.SHORT_TEXT, None
        if isinstance(value, (Mapping, list, tuple)):
            return FieldType.JSON, None
        return FieldType.SHORT_TEXT, None

    def parse_field_list(self, raw: Any) -> list[FieldSpec]:
        """Parse ``{"fields": [...]}``, a bare list, or their JSON text."""
        raw = _load_json(raw, "form schema")
        if not raw:
            return []

        if isinstance(raw, Mapping):
            raw = raw.get("fields") or []
        if not isinstance(raw, list):
            raise ValidationException("Form schema `fields` must be a list")

        fields = []
        for entry in raw:
            if not isinstance(entry, Mapping):
                raise ValidationException(f"Invalid field definition: {entry!r}")
            if not entry.get("name"):
                self._logger.warning(f"Skipping field without a name: {entry}")
                continue
            try:
                fields.append(FieldSpec.model_validate(entry))
            except ValidationError as exc:
                raise ValidationException(
                    f"Invalid field definition `{entry.get('name')}`: "
                    f"{exc.errors(include_url=False)}"
                ) from exc
        return fields

    def extract_fields_from_steps(self, steps: Any) -> list[dict[str, Any]]:
        steps = _load_json(steps, "form steps")
        if not steps:
            return []
        if not isinstance(steps, list):
            raise ValidationException("Form steps must be a list")

        extracted = []
        for index, step in enumerate(steps):
            step_fields = step.get("fields") if isinstance(step, Mapping) else None
            if not isinstance(step_fields, list):
                self._logger.debug(f"No fields found in step {index}")
                continue

            for entry in step_fields:
                if not isinstance(entry, Mapping):
                    continue
                field = {"name": entry.get("id"), "type": entry.get("type")}
                if "label" in entry:
                    field["label"] = entry["label"]
                if "required" in entry:
                    field["required"] = entry["required"]
                extracted.append(field)

        self._logger.debug(f"Extracted {len(extracted)} fields from {len(steps)} steps")
        return extracted

    def resolve_fields(
        self,
        *,
        inferred: Sequence[FieldSpec] | Any = None,
        form_schema: Any = None,
        steps: Any = None,
        sample: Mapping[str, Any] | None = None,
    ) -> list[FieldSpec]:
        sources = (
            ("inferred schema", lambda: self._coerce_inferred(inferred)),
            ("form schema", lambda: self.parse_field_list(form_schema)),
            (
                "form steps",
                lambda: self.parse_field_list(self.extract_fields_from_steps(steps)),
            ),
            ("sample data", lambda: self.infer_from_sample(sample or {})),
        )

        for source, resolve in sources:
            fields = resolve()
            if fields:
                self._logger.info(f"Using {len(fields)} fields from {source}")
                return fields

        self._logger.warning("No schema source yielded any field")
        return []

    def _coerce_inferred(self, inferred: Any) -> list[FieldSpec]:
        if not inferred:
            return []
        if all(isinstance(field, FieldSpec) for field in inferred):
            return list(inferred)
        return self.parse_field_list(inferred)


def _load_json(raw: Any, source: str) -> Any:
    if isinstance(raw, (str, bytes)):
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationException(f"Unparseable {source}: {exc}") from exc
    return raw
