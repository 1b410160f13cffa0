"""
Tax Bracket CRUD Operations

Brackets belong to exactly one rule and are never patched in place:
replace_brackets deletes every row of the owner and inserts the new set.
"""

from sqlalchemy.orm import Session
from sqlalchemy import func
from typing import List

from app.models.tax_rule import TaxBracket
from app.schema.tax_rule import BracketCreate


def get_brackets(db: Session, rule_id: str) -> List[TaxBracket]:
    """Get the brackets of a rule in bracket order."""
    return db.query(TaxBracket).filter(TaxBracket.rule_id == rule_id).order_by(TaxBracket.bracket_order).all()


def count_brackets(db: Session, rule_ids: List[str]) -> int:
    """Count stored brackets across several rules."""
    if not rule_ids:
        return 0
    return db.query(func.count(TaxBracket.id)).filter(TaxBracket.rule_id.in_(rule_ids)).scalar() or 0


def delete_brackets(db: Session, rule_id: str) -> int:
    """Delete every bracket owned by a rule."""
    deleted = db.query(TaxBracket).filter(TaxBracket.rule_id == rule_id).delete(synchronize_session=False)
    db.flush()
    return deleted


def replace_brackets(db: Session, rule_id: str, brackets: List[BracketCreate]) -> List[TaxBracket]:
    """Delete-then-insert the bracket set of a rule inside the caller's transaction."""
    delete_brackets(db, rule_id)
    
    rows = [
        TaxBracket(
            rule_id=rule_id,
            min_income=bracket.min_income,
            max_income=bracket.max_income,
            rate=bracket.rate,
            fixed_amount=bracket.fixed_amount,
            bracket_order=bracket.bracket_order
        )
        for bracket in brackets
    ]
    
    db.add_all(rows)
    db.flush()
    return rows
