"""
HTTP API - Test Suite

Runs the admin and forms routes through FastAPI's TestClient with the
database dependency pointed at the test session.

Run with: python -m pytest test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_rule_merger
from app.database import get_db
from main import app


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rule_merger] = lambda: None
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200


def test_aggregate_then_build_form_then_calculate(client, add_rule, income_rule_data):
    add_rule("income_tax", income_rule_data, rule_id="evidence")

    # 1. Aggregate
    response = client.post("/api/v1/admin/aggregate", json={"taxType": "income_tax", "date": "2025-01-01"})
    assert response.status_code == 200, response.text
    result = response.json()
    assert result["strategy"] == "single_rule_direct"
    assert result["brackets_created"] == 2
    print(f"   ✓ Aggregated into {result['aggregated_rule_id']}")

    # 2. Preflight
    response = client.get("/api/v1/admin/preflight", params={"schemaType": "income_tax", "date": "2025-01-01"})
    assert response.status_code == 200
    report = response.json()
    assert report["ready"] is True
    assert report["aggregated_rule_id"] == result["aggregated_rule_id"]

    # 3. Generate schema
    response = client.post("/api/v1/admin/generate-schema", params={"schemaType": "income_tax", "date": "2025-01-01"})
    assert response.status_code == 200, response.text
    schema = response.json()
    assert schema["version"] == 1
    assert schema["is_active"] is True

    # 4. Current form
    response = client.get("/api/v1/forms/current", params={"schemaType": "income_tax"})
    assert response.status_code == 200
    assert response.json()["schema_data"]["uiSchema"]["ui:order"] == ["annual_income"]

    # 5. Calculate
    response = client.post("/api/v1/forms/calculate", json={
        "schemaType": "income_tax",
        "date": "2025-06-30",
        "data": {"annual_income": 400000}
    })
    assert response.status_code == 200, response.text
    assert response.json()["total_tax"] == 30000.0


def test_schema_versions_and_activation(client, add_rule, income_rule_data):
    add_rule("income_tax", income_rule_data)
    for _ in range(2):
        client.post("/api/v1/admin/generate-schema", params={"schemaType": "income_tax", "date": "2025-01-01"})

    response = client.post("/api/v1/admin/schemas/income_tax/versions/1/activate")
    assert response.status_code == 200
    assert response.json()["version"] == 1

    versions = client.get("/api/v1/admin/schemas/income_tax/versions").json()
    assert [(v["version"], v["is_active"]) for v in versions] == [(2, False), (1, True)]

    response = client.post("/api/v1/admin/schemas/income_tax/versions/7/activate")
    assert response.status_code == 404


def test_error_mapping(client, add_rule):
    response = client.post("/api/v1/admin/aggregate", json={"taxType": "income_tax", "date": "2025-01-01"})
    assert response.status_code == 404
    assert "No evidence rules" in response.json()["detail"]

    add_rule("vat", {"required_variables": ["turnover"], "field_metadata": {"turnover": {"type": "number"}}})
    response = client.post("/api/v1/admin/aggregate", json={"taxType": "vat", "date": "2025-01-01"})
    assert response.status_code == 422

    response = client.post("/api/v1/admin/generate-schema", params={"schemaType": "vat", "date": "2025-01-01", "strict": "true"})
    assert response.status_code == 422

    response = client.get("/api/v1/forms/current", params={"schemaType": "paye"})
    assert response.status_code == 404

    response = client.post("/api/v1/forms/calculate", json={"schemaType": "vat", "data": {"turnover": 10}})
    assert response.status_code == 404


def test_current_aggregated_rule(client, add_rule, income_rule_data):
    add_rule("income_tax", income_rule_data, rule_id="evidence")
    aggregated = client.post("/api/v1/admin/aggregate", json={"taxType": "income_tax", "date": "2025-01-01"}).json()

    response = client.get("/api/v1/admin/rules/income_tax/current", params={"date": "2025-02-01"})

    assert response.status_code == 200, response.text
    rule = response.json()
    assert rule["id"] == aggregated["aggregated_rule_id"]
    assert rule["source_rule_ids"] == ["evidence"]
    assert [(b["bracket_order"], b["rate"]) for b in rule["brackets"]] == [(1, 0.06), (2, 0.12)]
    assert rule["rule_data"]["aggregation"]["strategy"] == "single_rule_direct"

    response = client.get("/api/v1/admin/rules/income_tax/current", params={"date": "2024-12-31"})
    assert response.status_code == 404
