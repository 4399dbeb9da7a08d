import json
from decimal import Decimal

import pytest

from core.exceptions import ValidationException
from model.dao.enums import FieldType
from model.dto.forms import FieldSpec
from service.schema_inference import SchemaInference


@pytest.fixture
def inference() -> SchemaInference:
    return SchemaInference(long_text_threshold=500)


def _types(fields: list[FieldSpec]) -> dict[str, FieldType]:
    return {field.name: field.type for field in fields}


class TestInferFromSample:
    def test_infers_types_in_rule_order(self, inference: SchemaInference) -> None:
        fields = inference.infer_from_sample(
            {
                "consent": True,
                "visits": 3,
                "whole_float": 4.0,
                "ratio": 0.75,
                "price": Decimal("9.99"),
                "visit_date": "2024-05-01",
                "visited_at": "2024-05-01T10:30:00",
                "report": "x" * 501,
                "contact": "ada@example.com",
                "location": {"lat": 1.0, "lng": 2.0},
                "tags": ["a", "b"],
                "name": "Ada",
                "nothing": None,
            }
        )

        assert _types(fields) == {
            "consent": FieldType.BOOLEAN,
            "visits": FieldType.INTEGER,
            "whole_float": FieldType.INTEGER,
            "ratio": FieldType.DECIMAL,
            "price": FieldType.DECIMAL,
            "visit_date": FieldType.DATE,
            "visited_at": FieldType.DATETIME,
            "report": FieldType.LONG_TEXT,
            "contact": FieldType.SHORT_TEXT,
            "location": FieldType.JSON,
            "tags": FieldType.JSON,
            "name": FieldType.SHORT_TEXT,
            "nothing": FieldType.SHORT_TEXT,
        }

    def test_email_values_carry_format_hint(self, inference: SchemaInference) -> None:
        (field,) = inference.infer_from_sample({"contact": "ada@example.com"})

        assert field.format == "email"
        assert field.required is False
        assert field.label == "contact"

    def test_skips_base_columns(self, inference: SchemaInference) -> None:
        fields = inference.infer_from_sample(
            {"id": "x", "current_state": "done", "form_code": "f", "score": 1}
        )
        assert [field.name for field in fields] == ["score"]

    def test_skips_keys_that_sanitize_to_base_columns(self, inference: SchemaInference) -> None:
        fields = inference.infer_from_sample(
            {"Created At": "x", "Deleted-By": "y", "note": "hi"}
        )
        assert [field.column_name for field in fields] == ["note"]

    def test_threshold_is_configurable(self) -> None:
        (field,) = SchemaInference(long_text_threshold=10).infer_from_sample(
            {"note": "eleven chars"}
        )
        assert field.type == FieldType.LONG_TEXT


class TestFieldListSources:
    def test_parses_field_list_blueprint(self, inference: SchemaInference) -> None:
        fields = inference.parse_field_list(
            {
                "fields": [
                    {"name": "inspector", "type": "text", "required": True, "max_length": 80},
                    {"label": "no name"},
                    {"name": "score", "type": "number"},
                ]
            }
        )

        assert [field.name for field in fields] == ["inspector", "score"]
        assert fields[0].required is True
        assert fields[0].max_length == 80
        assert fields[1].type == FieldType.INTEGER

    def test_parses_json_text(self, inference: SchemaInference) -> None:
        fields = inference.parse_field_list(json.dumps([{"name": "a", "type": "date"}]))
        assert _types(fields) == {"a": FieldType.DATE}

    @pytest.mark.parametrize("raw", ["{not json", {"fields": "nope"}, ["just a string"]])
    def test_rejects_unparseable_blueprints(self, inference: SchemaInference, raw) -> None:
        with pytest.raises(ValidationException):
            inference.parse_field_list(raw)

    def test_extracts_fields_from_steps(self, inference: SchemaInference) -> None:
        steps = [
            {
                "title": "Basics",
                "fields": [
                    {"id": "site_name", "type": "text", "label": "Site", "required": True},
                    {"id": "photo", "type": "image", "placeholder": "ignored"},
                ],
            },
            {"title": "Empty step"},
            {"fields": [{"id": "remarks", "type": "textarea"}]},
        ]

        assert inference.extract_fields_from_steps(steps) == [
            {"name": "site_name", "type": "text", "label": "Site", "required": True},
            {"name": "photo", "type": "image"},
            {"name": "remarks", "type": "textarea"},
        ]


class TestResolveFields:
    def test_inferred_override_wins(self, inference: SchemaInference) -> None:
        fields = inference.resolve_fields(
            inferred=[FieldSpec(name="override")],
            form_schema={"fields": [{"name": "blueprint"}]},
            steps=[{"fields": [{"id": "step"}]}],
            sample={"sample": 1},
        )
        assert [field.name for field in fields] == ["override"]

    def test_blueprint_beats_steps_and_sample(self, inference: SchemaInference) -> None:
        fields = inference.resolve_fields(
            form_schema={"fields": [{"name": "blueprint"}]},
            steps=[{"fields": [{"id": "step"}]}],
            sample={"sample": 1},
        )
        assert [field.name for field in fields] == ["blueprint"]

    def test_steps_beat_sample(self, inference: SchemaInference) -> None:
        fields = inference.resolve_fields(
            form_schema={},
            steps=[{"fields": [{"id": "step", "type": "number"}]}],
            sample={"sample": 1},
        )
        assert _types(fields) == {"step": FieldType.INTEGER}

    def test_sample_is_last_resort(self, inference: SchemaInference) -> None:
        fields = inference.resolve_fields(form_schema={}, steps=[], sample={"sample": 1.5})
        assert _types(fields) == {"sample": FieldType.DECIMAL}

    def test_sources_are_never_merged(self, inference: SchemaInference) -> None:
        fields = inference.resolve_fields(
            form_schema={"fields": [{"name": "a"}]}, sample={"b": 1}
        )
        assert [field.name for field in fields] == ["a"]

    def test_no_source_yields_no_fields(self, inference: SchemaInference) -> None:
        assert inference.resolve_fields() == []
