from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from decimal import Decimal

from .rule_data import RuleData


class EvidenceRule(BaseModel):
    """
    An evidence rule as seen by the aggregation engine.
    
    Dates are ISO "YYYY-MM-DD" strings: that format sorts lexically in the
    same order as chronologically, which the overlap check relies on.
    """
    id: str
    rule_category: str
    rule_type: Optional[str] = None
    title: str = ""
    description: Optional[str] = None
    rule_data: RuleData = Field(default_factory=RuleData)
    
    source_authority: Optional[str] = None
    source_rank: int = 0
    
    effective_date: Optional[str] = None
    expiry_date: Optional[str] = None
    document_source_id: Optional[str] = None
    created_at: Optional[datetime] = None


class BracketResponse(BaseModel):
    
    min_income: Optional[float] = None
    max_income: Optional[float] = None
    rate: float
    fixed_amount: Optional[float] = None
    bracket_order: int
    
    class Config:
        from_attributes = True


class AggregatedRuleResponse(BaseModel):
    """An aggregated rule with its stored brackets and the evidence it came from."""
    id: str
    rule_category: str
    title: str
    description: Optional[str] = None
    effective_date: Optional[date] = None
    rule_data: Dict[str, Any]
    brackets: List[BracketResponse] = []
    source_rule_ids: List[str] = []
    created_at: datetime
    
    class Config:
        from_attributes = True


class BracketCreate(BaseModel):
    """A canonical bracket row ready to be written for its owning rule."""
    min_income: Optional[Decimal] = None
    max_income: Optional[Decimal] = None
    rate: Decimal
    fixed_amount: Decimal = Decimal("0")
    bracket_order: int
