"""
Aggregation Persister

Publishes an aggregated rule for a (tax type, date) key in one
transaction: previous aggregated rule and brackets out, new rule,
brackets, provenance links and audit row in. A per-key advisory lock
keeps concurrent aggregations of the same key from interleaving.

Nothing is deleted until the new payload is fully computed; a failure
rolls back and leaves the previously published rule in place.
"""

from datetime import date, datetime
from typing import List, Tuple, Dict, Any
import time
import uuid
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.crud import crud_tax_rule, crud_provenance, crud_aggregation_run
from app.database import advisory_xact_lock
from app.exceptions.aggregation_exceptions import NoBracketsForBracketBasedType, PersistenceFailed
from app.models.aggregation_run import AggregationRun, AggregationRunStatus
from app.models.tax_rule import TaxRule, BRACKET_BASED_TYPES
from app.schema.aggregation import AggregationOutcome
from app.schema.conflict import Conflict, ConflictSummary
from app.schema.tax_rule import EvidenceRule
from .bracket_materializer import BracketMaterializer, MaterializationResult

logger = logging.getLogger(__name__)


def build_aggregated_rule_id(tax_type: str, target_date: date) -> str:
    """agg_<type>_<date>_<epoch ms>_<suffix>; the suffix keeps same-ms runs apart."""
    return f"agg_{tax_type}_{target_date.isoformat()}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def build_aggregated_payload(
    outcome: AggregationOutcome,
    evidence_rules: List[EvidenceRule],
    conflicts: List[Conflict]
) -> Dict[str, Any]:
    """Merged payload plus the aggregation metadata block."""
    payload = outcome.rule_data.to_payload()
    summary = ConflictSummary.from_conflicts(conflicts)

    payload["aggregation"] = {
        "source_rule_ids": [rule.id for rule in evidence_rules],
        "primary_rule_id": outcome.primary_rule_id,
        "strategy": outcome.strategy.value,
        "degraded": outcome.degraded,
        "fallback_reason": outcome.fallback_reason,
        "conflict_summary": summary.model_dump(mode="json"),
        "aggregated_at": datetime.now().isoformat(),
    }
    return payload


class AggregationPersister:
    """
    Writes aggregation results.

    Usage:
        persister = AggregationPersister(db)
        rule, run = persister.persist(tax_type, target_date, outcome, rules, conflicts, brackets, started_at)
    """

    def __init__(self, db: Session, materializer: BracketMaterializer = None):
        self.db = db
        self.materializer = materializer or BracketMaterializer()

    def check_brackets(self, tax_type: str, materialized: MaterializationResult) -> None:
        """Bracket-based types must ground out in at least one stored bracket."""
        if tax_type in BRACKET_BASED_TYPES and materialized.count == 0:
            detail = f"Aggregated {tax_type} rule has no usable brackets"
            if materialized.skipped:
                detail += f" ({materialized.skipped} skipped)"
            raise NoBracketsForBracketBasedType(detail)

    def persist(
        self,
        tax_type: str,
        target_date: date,
        outcome: AggregationOutcome,
        evidence_rules: List[EvidenceRule],
        conflicts: List[Conflict],
        materialized: MaterializationResult,
        started_at: datetime
    ) -> Tuple[TaxRule, AggregationRun]:
        """
        Replace the aggregated rule of a key.

        Raises:
            NoBracketsForBracketBasedType: before any write
            PersistenceFailed: the transaction failed and was rolled back
        """
        self.check_brackets(tax_type, materialized)

        rule_id = build_aggregated_rule_id(tax_type, target_date)
        payload = build_aggregated_payload(outcome, evidence_rules, conflicts)
        evidence_ids = [rule.id for rule in evidence_rules]

        try:
            advisory_xact_lock(self.db, f"aggregate:{tax_type}:{target_date.isoformat()}")

            replaced_ids = crud_tax_rule.delete_aggregated_rules(self.db, tax_type, target_date)

            rule = crud_tax_rule.add_aggregated_rule(
                self.db,
                rule_id=rule_id,
                tax_type=tax_type,
                effective_date=target_date,
                title=outcome.title or f"Aggregated {tax_type} rule",
                description=outcome.description,
                rule_data=payload
            )

            if tax_type in BRACKET_BASED_TYPES:
                self.materializer.store(self.db, rule_id, materialized)

            crud_provenance.replace_provenance(self.db, rule_id, evidence_ids)

            run = crud_aggregation_run.add_aggregation_run(
                self.db,
                tax_type=tax_type,
                target_date=target_date,
                status=AggregationRunStatus.COMPLETED_DEGRADED if outcome.degraded else AggregationRunStatus.COMPLETED,
                started_at=started_at,
                inputs_count=len(evidence_rules),
                outputs_count=1,
                conflicts_count=len(conflicts),
                strategy=outcome.strategy.value,
                details={
                    "aggregated_rule_id": rule_id,
                    "replaced_rule_ids": replaced_ids,
                    "brackets_created": materialized.count,
                    "brackets_skipped": materialized.skipped,
                    "warnings": materialized.warnings,
                    "fallback_reason": outcome.fallback_reason,
                }
            )

            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Persisting aggregated {tax_type} rule for {target_date} failed: {e}")
            raise PersistenceFailed(f"Failed to persist aggregated {tax_type} rule: {e}")

        self.db.refresh(rule)
        logger.info(
            f"Published {rule_id} ({outcome.strategy.value}) from {len(evidence_ids)} evidence rules, "
            f"replacing {len(replaced_ids)}"
        )
        return rule, run
