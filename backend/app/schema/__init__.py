"""
Schemas Package

Exports all Pydantic schemas for the tax rule aggregation system.
"""

# Rule payload schemas
from .rule_data import (
    SourceRef,
    FieldDefinition,
    FormulaSpec,
    BracketSpec,
    RuleData,
    parse_rule_data
)

# Rule schemas
from .tax_rule import (
    EvidenceRule,
    BracketCreate,
    BracketResponse,
    AggregatedRuleResponse
)

# Conflict schemas
from .conflict import (
    ConflictType,
    ResolutionStrategy,
    ConflictingRule,
    Conflict,
    ConflictSummary
)

# Aggregation schemas
from .aggregation import (
    AggregationStrategy,
    AggregationOutcome,
    AggregateRequest,
    AggregationResult
)

# Form schema schemas
from .form_schema import (
    FormSchemaResponse,
    FormSchemaSummary,
    PreflightReport,
    CalculationRequest,
    BracketBreakdown,
    CalculationResult
)


__all__ = [
    # Rule payload
    "SourceRef",
    "FieldDefinition",
    "FormulaSpec",
    "BracketSpec",
    "RuleData",
    "parse_rule_data",
    
    # Rules
    "EvidenceRule",
    "BracketCreate",
    "BracketResponse",
    "AggregatedRuleResponse",
    
    # Conflicts
    "ConflictType",
    "ResolutionStrategy",
    "ConflictingRule",
    "Conflict",
    "ConflictSummary",
    
    # Aggregation
    "AggregationStrategy",
    "AggregationOutcome",
    "AggregateRequest",
    "AggregationResult",
    
    # Form schemas
    "FormSchemaResponse",
    "FormSchemaSummary",
    "PreflightReport",
    "CalculationRequest",
    "BracketBreakdown",
    "CalculationResult",
]
