"""
Rule Aggregation Engine

Reconciles the evidence rules of a (tax type, date) key into one
aggregated rule.

Steps:
1. Read evidence in force on the date (fatal if there is none)
2. Detect conflicts (advisory)
3. One rule: use it directly. Several: ask the merger, and fall back to
   the best single rule if the merge fails
4. Materialize brackets
5. Publish rule, brackets, provenance and audit row atomically

Failed runs are still audited; the published rule is left untouched.
"""

from datetime import date, datetime
from typing import List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.crud import crud_tax_rule, crud_aggregation_run
from app.exceptions.aggregation_exceptions import MergeFailed
from app.exceptions.base import AppException
from app.schema.aggregation import AggregationOutcome, AggregationResult, AggregationStrategy
from app.schema.conflict import Conflict, ConflictType, ConflictSummary
from app.schema.rule_data import RuleData
from app.schema.tax_rule import EvidenceRule
from .bracket_materializer import BracketMaterializer
from .conflict_detector import ConflictDetector
from .merger import BaseRuleMerger
from .persister import AggregationPersister
from .rule_selector import select_best_rule

logger = logging.getLogger(__name__)


def union_required_variables(primary: RuleData, rules: List[EvidenceRule]) -> RuleData:
    """Primary's variables first, then every other rule's, in first-seen order."""
    merged = list(dict.fromkeys(primary.required_variables))
    for rule in rules:
        for variable in rule.rule_data.required_variables:
            if variable not in merged:
                merged.append(variable)
    return primary.model_copy(update={"required_variables": merged})


class RuleAggregationEngine:
    """
    Aggregates evidence rules for one key per call.

    The session is the store; the merger is optional. Without a merger,
    multi-rule keys go straight to the fallback selection.

    Usage:
        engine = RuleAggregationEngine(db, merger=IntelligentRuleMerger(client))
        result = engine.aggregate("income_tax", date(2025, 1, 1))
        print(result.aggregated_rule_id, result.strategy)
    """

    def __init__(
        self,
        db: Session,
        merger: Optional[BaseRuleMerger] = None,
        detector: Optional[ConflictDetector] = None,
        materializer: Optional[BracketMaterializer] = None
    ):
        self.db = db
        self.merger = merger
        self.detector = detector or ConflictDetector()
        self.materializer = materializer or BracketMaterializer()
        self.persister = AggregationPersister(db, self.materializer)

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def resolve(self, rules: List[EvidenceRule], conflicts: List[Conflict]) -> AggregationOutcome:
        """Choose the payload to publish and record how it was obtained."""
        if len(rules) == 1:
            rule = rules[0]
            return AggregationOutcome(
                rule_data=rule.rule_data,
                strategy=AggregationStrategy.SINGLE_RULE_DIRECT,
                primary_rule_id=rule.id,
                title=rule.title,
                description=rule.description
            )

        if self.merger is None:
            return self._fallback(rules, conflicts, "intelligent merge is not configured")

        try:
            merged = self.merger.merge(rules, conflicts)
        except MergeFailed as e:
            logger.warning(f"Intelligent merge failed, falling back to best single rule: {e.detail}")
            return self._fallback(rules, conflicts, e.detail)

        return AggregationOutcome(
            rule_data=merged,
            strategy=AggregationStrategy.INTELLIGENT_MERGE,
            title=f"Aggregated {rules[0].rule_category} rule",
            description=f"Merged from {len(rules)} evidence rules"
        )

    def _fallback(self, rules: List[EvidenceRule], conflicts: List[Conflict], reason: str) -> AggregationOutcome:
        best = select_best_rule(rules)
        rule_data = best.rule_data

        # Variable-set conflicts carry their own policy: take the union
        if any(c.conflict_type == ConflictType.VARIABLE_SET_MISMATCH for c in conflicts):
            rule_data = union_required_variables(rule_data, rules)

        return AggregationOutcome(
            rule_data=rule_data,
            strategy=AggregationStrategy.FALLBACK_SINGLE_BEST,
            primary_rule_id=best.id,
            title=best.title,
            description=best.description,
            degraded=True,
            fallback_reason=reason
        )

    # =========================================================================
    # AGGREGATION
    # =========================================================================

    def aggregate(self, tax_type: str, target_date: date) -> AggregationResult:
        """
        Aggregate the evidence of one key and publish the result.

        Raises:
            NoEvidenceFound: nothing in force for the key
            NoBracketsForBracketBasedType: the chosen payload has no usable brackets
            PersistenceFailed: the write transaction failed
        """
        started_at = datetime.now()
        rules: List[EvidenceRule] = []
        conflicts: List[Conflict] = []
        outcome: Optional[AggregationOutcome] = None

        try:
            rules = crud_tax_rule.get_evidence_rules(self.db, tax_type, target_date)
            conflicts = self.detector.detect(rules)
            outcome = self.resolve(rules, conflicts)
            materialized = self.materializer.materialize(outcome.rule_data)

            rule, run = self.persister.persist(
                tax_type, target_date, outcome, rules, conflicts, materialized, started_at
            )
        except AppException as e:
            self._record_failure(tax_type, target_date, started_at, e, rules, conflicts, outcome)
            raise

        return AggregationResult(
            aggregated_rule_id=rule.id,
            tax_type=tax_type,
            target_date=target_date,
            strategy=outcome.strategy,
            degraded=outcome.degraded,
            fallback_reason=outcome.fallback_reason,
            source_rule_ids=[r.id for r in rules],
            conflict_summary=ConflictSummary.from_conflicts(conflicts),
            brackets_created=materialized.count,
            brackets_skipped=materialized.skipped,
            warnings=materialized.warnings,
            run_id=run.id,
            rule_data=rule.rule_data
        )

    def _record_failure(
        self,
        tax_type: str,
        target_date: date,
        started_at: datetime,
        error: AppException,
        rules: List[EvidenceRule],
        conflicts: List[Conflict],
        outcome: Optional[AggregationOutcome]
    ) -> None:
        logger.error(f"Aggregation of {tax_type} for {target_date} failed: {error.detail}")
        try:
            crud_aggregation_run.create_failed_run(
                self.db,
                tax_type=tax_type,
                target_date=target_date,
                started_at=started_at,
                error_message=f"{type(error).__name__}: {error.detail}",
                inputs_count=len(rules),
                conflicts_count=len(conflicts),
                strategy=outcome.strategy.value if outcome else None
            )
        except SQLAlchemyError as audit_error:
            # The original failure is what the caller needs to see
            self.db.rollback()
            logger.error(f"Could not record failed aggregation run: {audit_error}")
