"""
Conflict Detector

Finds disagreements between evidence rules extracted from different
documents for the same tax type and date.

Five independent passes, concatenated without deduplication:
- Formulas: same formula name, different expressions
- Brackets: different (min, max, rate) band sequences
- Field metadata: same field, different declared type
- Required variables: different variable sets (resolved by union)
- Effective periods: pairwise overlapping validity windows

The result is advisory. The engine records conflicts and carries on;
only the merge validator can block on referential problems.
"""

from typing import List, Dict, Tuple, Optional, Any
from itertools import combinations
import logging

from app.schema.conflict import Conflict, ConflictType, ConflictingRule, ResolutionStrategy
from app.schema.tax_rule import EvidenceRule
from .bracket_materializer import normalize_rate, parse_amount

logger = logging.getLogger(__name__)


# Open interval bounds. Dates are ISO "YYYY-MM-DD" strings, which compare
# lexically in chronological order; nothing else is supported here.
OPEN_START = "0000-01-01"
OPEN_END = "9999-12-31"


class ConflictDetector:
    """
    Pure conflict detection over a set of evidence rules.

    Rules are visited in rule-id order and every conflicting_rules list is
    id-sorted, so the output does not depend on input order.

    Usage:
        detector = ConflictDetector()
        conflicts = detector.detect(rules)

        for conflict in conflicts:
            print(f"{conflict.conflict_type}: {conflict.description}")
    """

    def detect(self, rules: List[EvidenceRule]) -> List[Conflict]:
        """Run every pass and concatenate the results."""
        ordered = sorted(rules, key=lambda r: r.id)

        conflicts: List[Conflict] = []
        conflicts.extend(self.detect_formula_conflicts(ordered))
        conflicts.extend(self.detect_bracket_conflicts(ordered))
        conflicts.extend(self.detect_field_type_conflicts(ordered))
        conflicts.extend(self.detect_variable_conflicts(ordered))
        conflicts.extend(self.detect_period_overlaps(ordered))

        if conflicts:
            logger.info(f"Detected {len(conflicts)} conflicts across {len(rules)} evidence rules")
        return conflicts

    # =========================================================================
    # PASSES
    # =========================================================================

    def detect_formula_conflicts(self, rules: List[EvidenceRule]) -> List[Conflict]:
        expressions: Dict[str, List[Tuple[str, str]]] = {}

        for rule in sorted(rules, key=lambda r: r.id):
            for formula in rule.rule_data.formulas:
                if not formula.name or formula.expression is None:
                    continue
                expressions.setdefault(formula.name, []).append((rule.id, formula.expression.strip()))

        conflicts = []
        for name in sorted(expressions):
            contributions = expressions[name]
            distinct = {expression for _, expression in contributions}
            if len(distinct) <= 1:
                continue

            conflicts.append(Conflict(
                field_name=name,
                conflict_type=ConflictType.FORMULA_EXPRESSION_MISMATCH,
                description=(
                    f"Formula '{name}' has {len(distinct)} different expressions "
                    f"across {len(contributions)} rules"
                ),
                resolution_strategy=ResolutionStrategy.PREFER_HIGHER_AUTHORITY,
                conflicting_rules=self._conflicting(contributions)
            ))

        return conflicts

    def detect_bracket_conflicts(self, rules: List[EvidenceRule]) -> List[Conflict]:
        signatures = [
            (rule.id, self.bracket_signature(rule))
            for rule in sorted(rules, key=lambda r: r.id)
            if rule.rule_data.declares_brackets
        ]

        distinct = {signature for _, signature in signatures}
        if len(distinct) <= 1:
            return []

        return [Conflict(
            field_name="brackets",
            conflict_type=ConflictType.BRACKET_STRUCTURE_MISMATCH,
            description=(
                f"{len(signatures)} rules declare brackets with "
                f"{len(distinct)} different band structures"
            ),
            resolution_strategy=ResolutionStrategy.PREFER_RATE_SOURCE,
            conflicting_rules=self._conflicting(signatures)
        )]

    def detect_field_type_conflicts(self, rules: List[EvidenceRule]) -> List[Conflict]:
        declared: Dict[str, List[Tuple[str, str]]] = {}

        for rule in sorted(rules, key=lambda r: r.id):
            for field_name, definition in rule.rule_data.field_metadata.items():
                if not definition.type:
                    continue
                declared.setdefault(field_name, []).append((rule.id, definition.type.strip().lower()))

        conflicts = []
        for field_name in sorted(declared):
            contributions = declared[field_name]
            distinct = {field_type for _, field_type in contributions}
            if len(distinct) <= 1:
                continue

            conflicts.append(Conflict(
                field_name=field_name,
                conflict_type=ConflictType.FIELD_TYPE_MISMATCH,
                description=f"Field '{field_name}' is declared as {', '.join(sorted(distinct))}",
                resolution_strategy=ResolutionStrategy.PREFER_HIGHER_AUTHORITY,
                conflicting_rules=self._conflicting(contributions)
            ))

        return conflicts

    def detect_variable_conflicts(self, rules: List[EvidenceRule]) -> List[Conflict]:
        signatures = [
            (rule.id, ",".join(sorted(set(rule.rule_data.required_variables))))
            for rule in sorted(rules, key=lambda r: r.id)
            if rule.rule_data.required_variables
        ]

        distinct = {signature for _, signature in signatures}
        if len(distinct) <= 1:
            return []

        return [Conflict(
            field_name="required_variables",
            conflict_type=ConflictType.VARIABLE_SET_MISMATCH,
            description=f"{len(distinct)} different required-variable sets; the union is used",
            resolution_strategy=ResolutionStrategy.UNION_OF_VARIABLES,
            conflicting_rules=self._conflicting(signatures)
        )]

    def detect_period_overlaps(self, rules: List[EvidenceRule]) -> List[Conflict]:
        conflicts = []

        for first, second in combinations(sorted(rules, key=lambda r: r.id), 2):
            if not self.periods_overlap(first, second):
                continue

            conflicts.append(Conflict(
                field_name="effective_date",
                conflict_type=ConflictType.OVERLAPPING_EFFECTIVE_PERIODS,
                description=f"Rules {first.id} and {second.id} have overlapping effective periods",
                resolution_strategy=ResolutionStrategy.PREFER_MOST_RECENT,
                conflicting_rules=[
                    ConflictingRule(rule_id=first.id, value=self._period(first)),
                    ConflictingRule(rule_id=second.id, value=self._period(second)),
                ]
            ))

        return conflicts

    # =========================================================================
    # UTILITY METHODS
    # =========================================================================

    @staticmethod
    def bracket_signature(rule: EvidenceRule) -> str:
        """Concatenated (min,max,rate) triples, rate normalized to a fraction."""
        triples = []
        for bracket in rule.rule_data.brackets or []:
            rate = normalize_rate(bracket)
            triples.append(
                f"({_fmt(bracket.min_income)},{_fmt(bracket.max_income)},"
                f"{_fmt(rate)})"
            )
        return "".join(triples)

    @staticmethod
    def periods_overlap(first: EvidenceRule, second: EvidenceRule) -> bool:
        first_start, first_end = first.effective_date or OPEN_START, first.expiry_date or OPEN_END
        second_start, second_end = second.effective_date or OPEN_START, second.expiry_date or OPEN_END
        return first_start <= second_end and second_start <= first_end

    @staticmethod
    def _period(rule: EvidenceRule) -> str:
        return f"{rule.effective_date or 'open'}..{rule.expiry_date or 'open'}"

    @staticmethod
    def _conflicting(contributions: List[Tuple[str, Any]]) -> List[ConflictingRule]:
        return [ConflictingRule(rule_id=rule_id, value=value) for rule_id, value in sorted(contributions, key=lambda c: c[0])]


def _fmt(value: Optional[Any]) -> str:
    # 6 and 6.0 must render alike
    if value is None:
        return "null"
    amount = parse_amount(value)
    if amount is None:
        return str(value)
    return format(amount.normalize(), "f")
