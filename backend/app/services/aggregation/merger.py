"""
Intelligent Rule Merger

Asks the external model to reconcile several evidence rules into one
rule, then validates the answer fail-closed:
- the required top-level keys must be present
- every source reference must point at one of the merged evidence rules

Any failure is raised as MergeFailed; the engine then falls back to the
deterministic selector.
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Any, Iterable, Optional, Set
import json
import logging

from pydantic import ValidationError

from app.core.config import settings
from app.exceptions.aggregation_exceptions import MergeFailed, MergeValidationFailed, LLMServiceError
from app.schema.conflict import Conflict
from app.schema.rule_data import RuleData
from app.schema.tax_rule import EvidenceRule
from app.services.llm.gemini_client import GeminiClient, parse_json_response

logger = logging.getLogger(__name__)


REQUIRED_KEYS = ("required_variables", "field_metadata", "ui_order", "formulas")


# =============================================================================
# PROMPT
# =============================================================================

SYSTEM_CONTRACT = """You reconcile tax rules extracted from several official documents into ONE authoritative rule.

Rules you must follow:
1. Some documents are RATE/BRACKET sources (they state rate tables), others are FORMULA/METHODOLOGY
   sources (they explain how tax is computed). Take brackets from rate sources and the
   calculation method from methodology sources.
2. Classify every variable as either a true USER INPUT (something a taxpayer types in) or a
   DERIVED value (computed by a formula). Only user inputs go in required_variables,
   field_metadata and ui_order.
3. Chain formulas: each formula may only depend on user inputs or on the output_field of an
   earlier formula. Every formula MUST have an output_field.
4. Always emit BOTH a "brackets" array AND an equivalent single executable progressive-tax
   expression in "progressive_tax_logic".
5. Every field_metadata entry, formula and bracket must carry source_refs whose ruleId is
   one of the rule ids given to you. Never invent rule ids, values or rates.
6. Answer with a single JSON object only."""

OUTPUT_SCHEMA: Dict[str, Any] = {
    "required_variables": ["<user input name>"],
    "field_metadata": {
        "<user input name>": {
            "type": "number|integer|string|boolean",
            "title": "<label>",
            "description": "<help text>",
            "minimum": 0,
            "source_refs": [{"ruleId": "<evidence rule id>", "excerpt": "<quote>"}]
        }
    },
    "ui_order": ["<user input name>"],
    "brackets": [
        {
            "min_income": 0,
            "max_income": None,
            "rate_percent": 0,
            "fixed_amount": 0,
            "order": 1,
            "source_refs": [{"ruleId": "<evidence rule id>"}]
        }
    ],
    "formulas": [
        {
            "name": "<formula name>",
            "expression": "<expression over inputs and earlier outputs>",
            "output_field": "<name of computed value>",
            "order": 1,
            "depends_on": ["<input or earlier output>"],
            "source_refs": [{"ruleId": "<evidence rule id>"}]
        }
    ],
    "calculation_flow": ["<formula name in evaluation order>"],
    "progressive_tax_logic": "<single executable expression>",
    "conflicts_resolved": [{"field_name": "<field>", "resolution": "<what was chosen and why>"}]
}


def format_conflicts(conflicts: List[Conflict]) -> str:
    """Render detected conflicts as a numbered list for the prompt."""
    if not conflicts:
        return "No conflicts were detected."

    lines = []
    for index, conflict in enumerate(conflicts, start=1):
        lines.append(f"{index}. [{conflict.conflict_type.value}] {conflict.field_name}: {conflict.description}")
        for contribution in conflict.conflicting_rules:
            lines.append(f"   - rule {contribution.rule_id}: {json.dumps(contribution.value, default=str)}")
        lines.append(f"   suggested resolution: {conflict.resolution_strategy.value}")
    return "\n".join(lines)


def build_merge_prompt(rules: List[EvidenceRule], conflicts: List[Conflict]) -> str:
    """Full user prompt: candidate payloads, conflicts and the output schema."""
    sections = ["CANDIDATE RULES:"]
    for rule in rules:
        header = {
            "ruleId": rule.id,
            "title": rule.title,
            "sourceAuthority": rule.source_authority,
            "sourceRank": rule.source_rank,
            "effectiveDate": rule.effective_date,
            "expiryDate": rule.expiry_date,
        }
        sections.append(json.dumps(header))
        if rule.description:
            sections.append(f"Description: {rule.description}")
        sections.append(json.dumps(rule.rule_data.to_payload(), indent=2, sort_keys=True))
        sections.append("")

    sections.append("DETECTED CONFLICTS:")
    sections.append(format_conflicts(conflicts))
    sections.append("")
    sections.append("OUTPUT SCHEMA (respond with exactly this shape):")
    sections.append(json.dumps(OUTPUT_SCHEMA, indent=2))
    return "\n".join(sections)


# =============================================================================
# VALIDATION
# =============================================================================

def _refs_in(rule_data: RuleData) -> Iterable[tuple]:
    for field_name, definition in rule_data.field_metadata.items():
        for ref in definition.source_refs:
            yield f"field_metadata.{field_name}", ref
    for index, formula in enumerate(rule_data.formulas):
        for ref in formula.source_refs:
            yield f"formulas[{formula.name or index}]", ref
    for index, bracket in enumerate(rule_data.brackets or [], start=1):
        for ref in bracket.source_refs:
            yield f"brackets[{index}]", ref


def validate_merged_rule(payload: Dict[str, Any], evidence_ids: Set[str]) -> RuleData:
    """
    Validate a merged payload against the evidence it was built from.

    Raises:
        MergeValidationFailed: a required key is missing or the payload
            references a rule outside evidence_ids (first offender only)
        MergeFailed: the payload does not fit the rule data shape
    """
    missing = [key for key in REQUIRED_KEYS if key not in payload]
    if missing:
        raise MergeValidationFailed(f"Merged rule is missing required keys: {', '.join(missing)}")

    try:
        rule_data = RuleData.from_payload(payload)
    except ValidationError as e:
        raise MergeFailed(f"Merged rule has an invalid structure: {e.error_count()} errors")

    for location, ref in _refs_in(rule_data):
        if ref.rule_id is not None and ref.rule_id not in evidence_ids:
            raise MergeValidationFailed(
                f"Merged rule cites unknown rule id '{ref.rule_id}' at {location}"
            )

    return rule_data


# =============================================================================
# MERGERS
# =============================================================================

class BaseRuleMerger(ABC):
    """Port for anything that can merge several evidence rules into one."""

    @abstractmethod
    def merge(self, rules: List[EvidenceRule], conflicts: List[Conflict]) -> RuleData:
        """
        Merge rules into a single validated payload.

        Raises:
            MergeFailed: on any failure; callers fall back to selection
        """
        pass


class IntelligentRuleMerger(BaseRuleMerger):
    """
    Merger backed by the external model service.

    Usage:
        merger = IntelligentRuleMerger(GeminiClient.from_settings())
        rule_data = merger.merge(rules, conflicts)
    """

    def __init__(self, client: GeminiClient):
        self.client = client

    def merge(self, rules: List[EvidenceRule], conflicts: List[Conflict]) -> RuleData:
        evidence_ids = {rule.id for rule in rules}
        prompt = build_merge_prompt(rules, conflicts)

        try:
            text = self.client.generate(prompt, system_instruction=SYSTEM_CONTRACT)
        except LLMServiceError as e:
            raise MergeFailed(f"Model request failed: {e.detail}")

        try:
            payload = parse_json_response(text)
        except ValueError as e:
            raise MergeFailed(f"Unparsable model response: {e}")

        rule_data = validate_merged_rule(payload, evidence_ids)
        logger.info(
            f"Merged {len(rules)} rules into {len(rule_data.field_metadata)} fields, "
            f"{len(rule_data.formulas)} formulas, {len(rule_data.brackets or [])} brackets"
        )
        return rule_data


def build_rule_merger() -> Optional[BaseRuleMerger]:
    """Merger wired from settings; None when merging is disabled or no key is set."""
    if not settings.ENABLE_INTELLIGENT_MERGE:
        logger.info("Intelligent merge disabled by configuration")
        return None
    if not settings.GEMINI_API_KEY:
        logger.info("GEMINI_API_KEY not set, multi-rule aggregation will use the fallback selection")
        return None
    return IntelligentRuleMerger(GeminiClient.from_settings())
