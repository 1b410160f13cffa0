"""
Tax Rule Models

Evidence rules (one per source document extraction) and aggregated rules
(one reconciled rule per tax type and effective date) share the tax_rules
table. They are told apart by rule_type: aggregated rows carry
RuleType.AGGREGATED, anything else is evidence.

Brackets are owned by exactly one rule and are rewritten wholesale.
"""

from sqlalchemy import Column, String, DateTime, Date, Integer, Text, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import StrEnum
import uuid
from app.database import Base, JSONType


# =============================================================================
# ENUMS
# =============================================================================

class TaxType(StrEnum):
    """Tax types a rule can belong to (stored in rule_category)."""
    INCOME_TAX = "income_tax"
    PAYE = "paye"
    VAT = "vat"


# Tax types whose aggregated rule must ground out in a rate table
BRACKET_BASED_TYPES = frozenset({TaxType.INCOME_TAX, TaxType.PAYE, TaxType.VAT})


class RuleType(StrEnum):
    """Values of rule_type. Evidence rows use the extraction tag."""
    EXTRACTED = "extracted"
    AGGREGATED = "aggregated"


# Storage ceiling of tax_brackets.rate (NUMERIC(5,4))
MAX_BRACKET_RATE = 9.9999


# =============================================================================
# TAX RULE
# =============================================================================

class TaxRule(Base):
    """
    A rule for one tax type.
    
    rule_data holds the structured payload (required_variables,
    field_metadata, formulas, brackets, ui_order). Aggregated rules
    additionally carry an "aggregation" block with source ids, strategy
    and conflict summary.
    """
    __tablename__ = "tax_rules"
    
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    
    # Classification
    rule_category = Column(String, nullable=False, index=True)  # TaxType value
    rule_type = Column(String, nullable=True, index=True)  # RuleType value
    
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    rule_data = Column(JSONType, nullable=False, default=dict)
    
    # Validity window (NULL = unbounded)
    effective_date = Column(Date, nullable=True, index=True)
    expiry_date = Column(Date, nullable=True)
    
    # Source
    document_source_id = Column(String, ForeignKey("documents.id", ondelete="SET NULL"), nullable=True, index=True)
    
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
    
    # Relationships
    document = relationship("SourceDocument", back_populates="rules")
    brackets = relationship(
        "TaxBracket",
        back_populates="rule",
        cascade="all, delete-orphan",
        order_by="TaxBracket.bracket_order"
    )
    
    def __repr__(self):
        return f"<TaxRule(id={self.id}, category={self.rule_category}, type={self.rule_type}, effective={self.effective_date})>"


# =============================================================================
# TAX BRACKET
# =============================================================================

class TaxBracket(Base):
    """One band of a progressive rate schedule."""
    __tablename__ = "tax_brackets"
    __table_args__ = (
        UniqueConstraint("rule_id", "bracket_order", name="unique_rule_bracket_order"),
    )
    
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    rule_id = Column(String, ForeignKey("tax_rules.id", ondelete="CASCADE"), nullable=False, index=True)
    
    min_income = Column(Numeric(15, 2), nullable=True)
    max_income = Column(Numeric(15, 2), nullable=True)  # NULL = open-ended top band
    rate = Column(Numeric(5, 4), nullable=False)  # fraction, 0.24 for 24%
    fixed_amount = Column(Numeric(15, 2), nullable=True, default=0)
    bracket_order = Column(Integer, nullable=False)  # 1-based, contiguous per rule
    
    rule = relationship("TaxRule", back_populates="brackets")
    
    def to_dict(self):
        return {
            "min_income": float(self.min_income) if self.min_income is not None else None,
            "max_income": float(self.max_income) if self.max_income is not None else None,
            "rate": float(self.rate),
            "fixed_amount": float(self.fixed_amount) if self.fixed_amount is not None else 0.0,
            "bracket_order": self.bracket_order,
        }
    
    def __repr__(self):
        return f"<TaxBracket(rule={self.rule_id}, order={self.bracket_order}, {self.min_income}-{self.max_income} @ {self.rate})>"
