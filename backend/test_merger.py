"""
Intelligent Merger - Test Suite

Tests prompt building, response parsing and fail-closed validation of
merged rules. The model service is replaced by a fake client.

Run with: python -m pytest test_merger.py -v
"""

import json

import pytest
import requests

from app.exceptions.aggregation_exceptions import MergeFailed, MergeValidationFailed, LLMServiceError
from app.schema import Conflict, ConflictType, ResolutionStrategy, ConflictingRule
from app.services.aggregation import IntelligentRuleMerger, build_merge_prompt, validate_merged_rule
from app.services.llm import GeminiClient, parse_json_response


def _merged_payload(rule_id="r1"):
    return {
        "required_variables": ["annual_income"],
        "field_metadata": {
            "annual_income": {"type": "number", "source_refs": [{"ruleId": rule_id, "excerpt": "income"}]}
        },
        "ui_order": ["annual_income"],
        "formulas": [
            {"name": "tax", "expression": "annual_income * 0.1", "output_field": "tax", "source_refs": [{"ruleId": rule_id}]}
        ],
        "brackets": [
            {"min_income": 0, "max_income": None, "rate_percent": 10, "order": 1, "source_refs": [{"ruleId": rule_id}]}
        ],
    }


# =============================================================================
# VALIDATION
# =============================================================================

def test_valid_payload_passes():
    rule_data = validate_merged_rule(_merged_payload("r1"), {"r1", "r2"})

    assert rule_data.required_variables == ["annual_income"]
    assert rule_data.field_metadata["annual_income"].source_refs[0].rule_id == "r1"


def test_unknown_rule_id_fails_closed():
    with pytest.raises(MergeValidationFailed) as excinfo:
        validate_merged_rule(_merged_payload("invented"), {"r1", "r2"})

    assert "invented" in excinfo.value.detail
    assert isinstance(excinfo.value, MergeFailed), "Validation failures must trigger the fallback"


def test_unknown_rule_id_in_brackets_fails():
    payload = _merged_payload("r1")
    payload["brackets"][0]["source_refs"] = ["r9"]

    with pytest.raises(MergeValidationFailed) as excinfo:
        validate_merged_rule(payload, {"r1"})

    assert "brackets[1]" in excinfo.value.detail


@pytest.mark.parametrize("missing", ["required_variables", "field_metadata", "ui_order", "formulas"])
def test_missing_required_key_fails(missing):
    payload = _merged_payload("r1")
    del payload[missing]

    with pytest.raises(MergeValidationFailed):
        validate_merged_rule(payload, {"r1"})


# =============================================================================
# PARSING
# =============================================================================

def test_parse_strips_code_fences_and_prose():
    text = "Here is the merged rule:\n```json\n{\"ui_order\": [\"a\"]}\n```\nLet me know!"

    assert parse_json_response(text) == {"ui_order": ["a"]}


def test_parse_plain_object_with_prose():
    assert parse_json_response('Sure. {"a": 1} Done.') == {"a": 1}


@pytest.mark.parametrize("text", ["", "no json here", "[1, 2, 3]", "{broken"])
def test_parse_rejects_non_objects(text):
    with pytest.raises(ValueError):
        parse_json_response(text)


# =============================================================================
# MERGER
# =============================================================================

def test_prompt_contains_rules_and_conflicts(evidence):
    rules = [evidence("r1", {"required_variables": ["income"]}), evidence("r2", {"required_variables": ["salary"]})]
    conflicts = [Conflict(
        field_name="required_variables",
        conflict_type=ConflictType.VARIABLE_SET_MISMATCH,
        description="different sets",
        resolution_strategy=ResolutionStrategy.UNION_OF_VARIABLES,
        conflicting_rules=[ConflictingRule(rule_id="r1", value="income"), ConflictingRule(rule_id="r2", value="salary")]
    )]

    prompt = build_merge_prompt(rules, conflicts)

    assert '"ruleId": "r1"' in prompt and '"ruleId": "r2"' in prompt
    assert "variable_set_mismatch" in prompt
    assert "OUTPUT SCHEMA" in prompt


def test_merge_with_fenced_answer(evidence, fake_client):
    client = fake_client(text="```json\n" + json.dumps(_merged_payload("r2")) + "\n```")
    merger = IntelligentRuleMerger(client)

    rule_data = merger.merge([evidence("r1", {}), evidence("r2", {})], [])

    assert rule_data.brackets[0].rate_percent == 10
    assert len(client.prompts) == 1


def test_merge_turns_service_errors_into_merge_failed(evidence, fake_client):
    merger = IntelligentRuleMerger(fake_client(error=LLMServiceError("timeout")))

    with pytest.raises(MergeFailed):
        merger.merge([evidence("r1", {}), evidence("r2", {})], [])


def test_merge_rejects_unparsable_answer(evidence, fake_client):
    merger = IntelligentRuleMerger(fake_client(text="I cannot help with that."))

    with pytest.raises(MergeFailed):
        merger.merge([evidence("r1", {}), evidence("r2", {})], [])


# =============================================================================
# CLIENT
# =============================================================================

class _Response:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = json.dumps(self._payload)

    def json(self):
        return self._payload


class _Session:
    def __init__(self, responses):
        self.responses = list(responses)
        self.headers = {}
        self.calls = 0

    def post(self, url, params=None, json=None, timeout=None):
        self.calls += 1
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(session, max_retries=2):
    client = GeminiClient("key", "gemini-test", "https://example.test/v1beta", timeout=5, max_retries=max_retries, session=session)
    client.RETRY_BACKOFF_SECONDS = 0
    return client


def test_client_retries_transport_errors_and_5xx():
    ok = _Response(200, {"candidates": [{"content": {"parts": [{"text": "{\"a\": 1}"}]}}]})
    session = _Session([requests.ConnectionError("reset"), _Response(503), ok])

    assert _client(session).generate("prompt") == "{\"a\": 1}"
    assert session.calls == 3


def test_client_does_not_retry_client_errors():
    session = _Session([_Response(400, {"error": "bad request"})])

    with pytest.raises(LLMServiceError):
        _client(session).generate("prompt")
    assert session.calls == 1


def test_client_gives_up_after_bounded_retries():
    session = _Session([_Response(500), _Response(500)])

    with pytest.raises(LLMServiceError):
        _client(session, max_retries=1).generate("prompt")
    assert session.calls == 2


def test_client_requires_api_key():
    with pytest.raises(LLMServiceError):
        GeminiClient("", "gemini-test", "https://example.test").generate("prompt")


def test_scalar_source_refs_is_an_invalid_structure():
    payload = _merged_payload("r1")
    payload["field_metadata"]["annual_income"]["source_refs"] = 5

    with pytest.raises(MergeFailed) as excinfo:
        validate_merged_rule(payload, {"r1"})

    assert "invalid structure" in excinfo.value.detail


@pytest.mark.parametrize("body", [
    [{"candidates": []}],
    {"candidates": ["{\"a\": 1}"]},
    {"candidates": [{"content": "{\"a\": 1}"}]},
])
def test_client_rejects_malformed_bodies(body):
    session = _Session([_Response(200, body)])

    with pytest.raises(LLMServiceError):
        _client(session).generate("prompt")
