"""
Tax Rule CRUD Operations

Database operations for evidence and aggregated rules, including the
evidence store accessor used by the aggregation engine.

Functions that take part in an aggregation only flush; the caller owns
the transaction.
"""

from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import List, Optional, Dict, Any
from datetime import date, datetime
import logging

from app.models.tax_rule import TaxRule, RuleType
from app.models.document import SourceDocument
from app.models.provenance import RuleProvenance
from app.schema.tax_rule import EvidenceRule
from app.schema.rule_data import parse_rule_data
from app.exceptions.aggregation_exceptions import NoEvidenceFound

logger = logging.getLogger(__name__)


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def to_evidence_rule(rule: TaxRule, document: Optional[SourceDocument] = None) -> Optional[EvidenceRule]:
    """Convert an ORM row into the engine's typed view. None if the payload is malformed."""
    rule_data = parse_rule_data(rule.rule_data, rule.id)
    if rule_data is None:
        return None
    
    document = document or rule.document
    return EvidenceRule(
        id=rule.id,
        rule_category=rule.rule_category,
        rule_type=rule.rule_type,
        title=rule.title,
        description=rule.description,
        rule_data=rule_data,
        source_authority=document.source_authority if document else None,
        source_rank=(document.source_rank or 0) if document else 0,
        effective_date=_iso(rule.effective_date),
        expiry_date=_iso(rule.expiry_date),
        document_source_id=rule.document_source_id,
        created_at=rule.created_at
    )


def sort_evidence_rules(rules: List[EvidenceRule]) -> List[EvidenceRule]:
    """
    Rank evidence for downstream use.
    
    Rules with field metadata or required variables first, then higher
    source rank, then the most recent. Rule id settles exact ties.
    """
    ranked = sorted(rules, key=lambda r: r.id)
    ranked.sort(key=lambda r: r.created_at or datetime.min, reverse=True)
    ranked.sort(key=lambda r: r.effective_date or "", reverse=True)
    ranked.sort(key=lambda r: r.source_rank, reverse=True)
    ranked.sort(key=lambda r: not r.rule_data.has_inputs)
    return ranked


# =============================================================================
# EVIDENCE RULES
# =============================================================================

def get_evidence_rules(db: Session, tax_type: str, target_date: date) -> List[EvidenceRule]:
    """
    Get every evidence rule of a tax type in force on target_date.
    
    Aggregated rows are excluded; NULL effective/expiry bounds count as
    unbounded. Raises NoEvidenceFound when nothing qualifies.
    """
    rows = (
        db.query(TaxRule, SourceDocument)
        .outerjoin(SourceDocument, TaxRule.document_source_id == SourceDocument.id)
        .filter(TaxRule.rule_category == tax_type)
        .filter(or_(TaxRule.rule_type.is_(None), TaxRule.rule_type != RuleType.AGGREGATED.value))
        .filter(or_(TaxRule.effective_date.is_(None), TaxRule.effective_date <= target_date))
        .filter(or_(TaxRule.expiry_date.is_(None), TaxRule.expiry_date >= target_date))
        .all()
    )
    
    rules = []
    for rule, document in rows:
        evidence = to_evidence_rule(rule, document)
        if evidence is None:
            logger.warning(f"Skipping evidence rule {rule.id}: unreadable rule_data")
            continue
        rules.append(evidence)
    
    if not rules:
        raise NoEvidenceFound(f"No evidence rules found for {tax_type} on {target_date.isoformat()}")
    
    return sort_evidence_rules(rules)


# =============================================================================
# AGGREGATED RULES
# =============================================================================

def get_aggregated_rules(db: Session, tax_type: str, effective_date: date) -> List[TaxRule]:
    """Get the aggregated rules stored under one (tax type, date) key."""
    return (
        db.query(TaxRule)
        .filter(TaxRule.rule_category == tax_type)
        .filter(TaxRule.rule_type == RuleType.AGGREGATED.value)
        .filter(TaxRule.effective_date == effective_date)
        .all()
    )


def get_current_aggregated_rule(db: Session, tax_type: str, target_date: date) -> Optional[TaxRule]:
    """Get the aggregated rule in force on target_date (latest effective date wins)."""
    return (
        db.query(TaxRule)
        .filter(TaxRule.rule_category == tax_type)
        .filter(TaxRule.rule_type == RuleType.AGGREGATED.value)
        .filter(or_(TaxRule.effective_date.is_(None), TaxRule.effective_date <= target_date))
        .order_by(TaxRule.effective_date.desc().nullslast(), TaxRule.created_at.desc())
        .first()
    )


def add_aggregated_rule(
    db: Session,
    rule_id: str,
    tax_type: str,
    effective_date: date,
    title: str,
    description: Optional[str],
    rule_data: Dict[str, Any]
) -> TaxRule:
    """Insert an aggregated rule inside the caller's transaction."""
    rule = TaxRule(
        id=rule_id,
        rule_category=tax_type,
        rule_type=RuleType.AGGREGATED.value,
        title=title,
        description=description,
        rule_data=rule_data,
        effective_date=effective_date
    )
    
    db.add(rule)
    db.flush()
    return rule


def delete_aggregated_rules(db: Session, tax_type: str, effective_date: date) -> List[str]:
    """Delete the aggregated rules (and their brackets) for a key. Returns deleted ids."""
    existing = get_aggregated_rules(db, tax_type, effective_date)
    deleted_ids = [rule.id for rule in existing]
    
    if deleted_ids:
        db.query(RuleProvenance).filter(RuleProvenance.aggregated_rule_id.in_(deleted_ids)).delete(synchronize_session=False)
    for rule in existing:
        db.delete(rule)
    db.flush()
    
    return deleted_ids
