"""
Aggregation Schemas

Request/response schemas for the aggregation engine plus the outcome type
that records which strategy actually produced an aggregated payload.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import date
from enum import Enum

from .conflict import Conflict, ConflictSummary
from .rule_data import RuleData


class AggregationStrategy(str, Enum):
    SINGLE_RULE_DIRECT = "single_rule_direct"
    INTELLIGENT_MERGE = "intelligent_merge"
    FALLBACK_SINGLE_BEST = "fallback_single_best"


class AggregationOutcome(BaseModel):
    """
    Payload chosen for publication together with how it was obtained.
    
    degraded is True when the intelligent merge was wanted but the
    deterministic fallback had to be used instead.
    """
    rule_data: RuleData
    strategy: AggregationStrategy
    primary_rule_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    degraded: bool = False
    fallback_reason: Optional[str] = None


class AggregateRequest(BaseModel):
    tax_type: str = Field(..., alias="taxType")
    target_date: date = Field(..., alias="date")
    
    class Config:
        populate_by_name = True


class AggregationResult(BaseModel):
    """Result of one aggregate-for-type-and-date call."""
    aggregated_rule_id: str
    tax_type: str
    target_date: date
    strategy: AggregationStrategy
    degraded: bool = False
    fallback_reason: Optional[str] = None
    source_rule_ids: List[str] = Field(default_factory=list)
    conflict_summary: ConflictSummary = Field(default_factory=ConflictSummary)
    brackets_created: int = 0
    brackets_skipped: int = 0
    warnings: List[str] = Field(default_factory=list)
    run_id: Optional[str] = None
    rule_data: Dict[str, Any] = Field(default_factory=dict)
    
    @property
    def conflicts(self) -> List[Conflict]:
        return self.conflict_summary.conflicts
