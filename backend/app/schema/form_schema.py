from pydantic import BaseModel, Field, computed_field
from typing import Optional, List, Dict, Any
from datetime import datetime, date


class FormSchemaResponse(BaseModel):
    
    id: str
    schema_type: str
    version: int
    schema_data: Dict[str, Any]
    is_active: bool
    created_at: datetime
    
    class Config:
        from_attributes = True


class FormSchemaSummary(BaseModel):
    
    schema_type: str
    version: int
    is_active: bool
    created_at: datetime
    
    class Config:
        from_attributes = True


class PreflightReport(BaseModel):
    """Dry run of schema generation: what would be used and what blocks it."""
    schema_type: str
    target_date: date
    evidence_rules: int = 0
    aggregated_rule_id: Optional[str] = None
    source_rule_ids: List[str] = Field(default_factory=list)
    field_count: int = 0
    required_count: int = 0
    bracket_count: int = 0
    issues: List[str] = Field(default_factory=list)
    
    @computed_field
    @property
    def ready(self) -> bool:
        return not self.issues


class CalculationRequest(BaseModel):
    schema_type: str = Field(..., alias="schemaType")
    target_date: Optional[date] = Field(None, alias="date")
    data: Dict[str, Any] = Field(default_factory=dict)
    
    class Config:
        populate_by_name = True


class BracketBreakdown(BaseModel):
    bracket_order: int
    taxable_amount: float
    rate: float
    fixed_amount: float
    tax: float


class CalculationResult(BaseModel):
    schema_type: str
    rule_id: str
    taxable_income: float
    total_tax: float
    breakdown: List[BracketBreakdown] = Field(default_factory=list)
    single_bracket_tax: Optional[float] = None
