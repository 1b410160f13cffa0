"""
Form Schema Builder - Test Suite

Tests schema synthesis, ordering, strict-mode refusals and the
single-active version discipline.

Run with: python -m pytest test_form_schema_builder.py -v
"""

from datetime import date

import pytest

from app.crud import crud_form_schema
from app.exceptions.form_schema_exceptions import FormSchemaGenerationFailed
from app.models import FormSchema
from app.services.aggregation import RuleAggregationEngine
from app.services.forms import FormSchemaBuilder, synthesize_field

TARGET = date(2025, 1, 1)


@pytest.fixture
def paye_rule_data():
    return {
        "required_variables": ["gross_salary", "is_resident", "pension_contributions"],
        "field_metadata": {
            "gross_salary": {"type": "number", "title": "Gross salary", "source_refs": [{"ruleId": "x"}]},
            "is_resident": {},
            "pension_contributions": {"title": "Pension"},
            "dependants": {"type": "integer"},
        },
        "ui_order": ["is_resident"],
        "formulas": [
            {"name": "net_tax", "expression": "gross_tax - relief", "output_field": "net_tax", "order": 2},
            {"name": "gross_tax", "expression": "progressive(gross_salary)", "output_field": "gross_tax", "order": 1},
        ],
        "brackets": [{"min_income": 0, "max_income": None, "rate_percent": 10}],
    }


def _active_rows(db, schema_type):
    return db.query(FormSchema).filter(FormSchema.schema_type == schema_type, FormSchema.is_active.is_(True)).all()


def test_field_synthesis():
    assert synthesize_field("annual_income") == {"type": "number", "minimum": 0}
    assert synthesize_field("pension_contributions") == {"type": "number", "minimum": 0}
    assert synthesize_field("is_resident") == {"type": "boolean"}
    assert synthesize_field("number_of_children") == {"type": "integer", "minimum": 0}
    assert synthesize_field("residency_status") == {"type": "string"}


def test_schema_document(db, add_rule, paye_rule_data):
    add_rule("paye", paye_rule_data, rule_id="paye_rule")

    schema = FormSchemaBuilder(db).generate("paye", TARGET)
    data = schema.schema_data
    properties = data["jsonSchema"]["properties"]

    assert schema.version == 1 and schema.is_active
    assert data["jsonSchema"]["type"] == "object"
    assert data["jsonSchema"]["additionalProperties"] is False
    assert properties["gross_salary"] == {"type": "number", "title": "Gross salary"}, "source_refs never leak"
    assert properties["is_resident"]["type"] == "boolean"
    assert properties["pension_contributions"] == {"title": "Pension", "type": "number", "minimum": 0}
    assert data["jsonSchema"]["required"] == ["gross_salary", "is_resident", "pension_contributions"]

    assert data["uiSchema"]["ui:order"] == ["is_resident", "gross_salary", "pension_contributions", "dependants"]
    assert [f["name"] for f in data["formulas"]] == ["gross_tax", "net_tax"]

    metadata = data["metadata"]
    assert metadata["schemaType"] == "paye"
    assert metadata["targetDate"] == "2025-01-01"
    assert metadata["sourceRuleIds"] == ["paye_rule"]
    assert metadata["version"] == 1
    print(f"   ✓ {len(properties)} fields, order {data['uiSchema']['ui:order']}")


def test_required_only_covers_described_fields(db, add_rule):
    add_rule("income_tax", {
        "required_variables": ["annual_income", "undescribed"],
        "field_metadata": {"annual_income": {"type": "number"}},
        "brackets": [{"min_income": 0, "rate": 0.1}],
    })

    data = FormSchemaBuilder(db).generate("income_tax", TARGET).schema_data

    assert data["jsonSchema"]["required"] == ["annual_income"]
    assert data["jsonSchema"]["properties"]["undescribed"]["type"] == "string"


def test_prefers_aggregated_rule(db, add_rule, paye_rule_data):
    add_rule("paye", paye_rule_data, rule_id="paye_rule")
    result = RuleAggregationEngine(db).aggregate("paye", TARGET)

    schema = FormSchemaBuilder(db).generate("paye", TARGET)

    assert schema.schema_data["metadata"]["sourceRuleIds"] == [result.aggregated_rule_id]


def test_new_version_deactivates_previous(db, add_rule, paye_rule_data):
    """Scenario C: exactly one active paye row; the old version stays, inactive."""
    add_rule("paye", paye_rule_data)
    builder = FormSchemaBuilder(db)

    first = builder.generate("paye", TARGET)
    second = builder.generate("paye", TARGET)
    db.refresh(first)

    assert second.version == 2
    assert [row.id for row in _active_rows(db, "paye")] == [second.id]
    assert first.is_active is False
    assert [row.version for row in crud_form_schema.get_schema_versions(db, "paye")] == [2, 1]


def test_activate_older_version(db, add_rule, paye_rule_data):
    add_rule("paye", paye_rule_data)
    builder = FormSchemaBuilder(db)
    builder.generate("paye", TARGET)
    builder.generate("paye", TARGET)

    restored = crud_form_schema.activate_version(db, "paye", 1)

    assert restored.is_active
    assert [row.version for row in _active_rows(db, "paye")] == [1]
    assert crud_form_schema.activate_version(db, "paye", 9) is None


def test_strict_mode_refuses_without_inputs(db, add_rule):
    add_rule("paye", {"brackets": [{"min_income": 0, "rate": 0.1}]})

    with pytest.raises(FormSchemaGenerationFailed):
        FormSchemaBuilder(db).generate("paye", TARGET, strict=True)

    assert crud_form_schema.get_schema_versions(db, "paye") == []


def test_strict_mode_refuses_bracket_type_without_brackets(db, add_rule):
    add_rule("vat", {"required_variables": ["turnover"], "field_metadata": {"turnover": {"type": "number"}}})

    with pytest.raises(FormSchemaGenerationFailed) as excinfo:
        FormSchemaBuilder(db).generate("vat", TARGET, strict=True)

    assert "no brackets" in excinfo.value.detail


def test_lenient_mode_still_publishes(db, add_rule):
    add_rule("vat", {"required_variables": ["turnover"], "field_metadata": {"turnover": {"type": "number"}}})

    schema = FormSchemaBuilder(db).generate("vat", TARGET, strict=False)

    assert schema.is_active
    assert list(schema.schema_data["jsonSchema"]["properties"]) == ["turnover"]


def test_preflight_writes_nothing(db, add_rule, paye_rule_data):
    add_rule("paye", paye_rule_data, rule_id="paye_rule")

    report = FormSchemaBuilder(db).preflight("paye", TARGET)

    assert report.ready
    assert report.evidence_rules == 1
    assert report.aggregated_rule_id is None
    assert report.field_count == 4
    assert report.required_count == 3
    assert report.bracket_count == 1
    assert crud_form_schema.get_schema_versions(db, "paye") == []

    empty = FormSchemaBuilder(db).preflight("vat", TARGET)
    assert not empty.ready
    assert empty.issues


def test_rate_and_age_names():
    assert synthesize_field("vat_percentage") == {"type": "number", "minimum": 0}
    assert synthesize_field("mortgage_rate") == {"type": "number", "minimum": 0}
    assert synthesize_field("age") == {"type": "integer", "minimum": 0}
    assert synthesize_field("spouse_age") == {"type": "integer", "minimum": 0}
    assert synthesize_field("language") == {"type": "string"}
