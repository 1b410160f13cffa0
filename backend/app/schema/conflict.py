from pydantic import BaseModel, Field
from typing import Any, Dict, List
from enum import Enum


class ConflictType(str, Enum):
    FORMULA_EXPRESSION_MISMATCH = "formula_expression_mismatch"
    BRACKET_STRUCTURE_MISMATCH = "bracket_structure_mismatch"
    FIELD_TYPE_MISMATCH = "field_type_mismatch"
    VARIABLE_SET_MISMATCH = "variable_set_mismatch"
    OVERLAPPING_EFFECTIVE_PERIODS = "overlapping_effective_periods"


class ResolutionStrategy(str, Enum):
    PREFER_HIGHER_AUTHORITY = "prefer_higher_authority"
    PREFER_RATE_SOURCE = "prefer_rate_source"
    UNION_OF_VARIABLES = "union_of_variables"
    PREFER_MOST_RECENT = "prefer_most_recent"


class ConflictingRule(BaseModel):
    rule_id: str
    value: Any = None


class Conflict(BaseModel):
    """One disagreement between evidence rules. Advisory, never blocking."""
    field_name: str
    conflict_type: ConflictType
    description: str
    resolution_strategy: ResolutionStrategy
    conflicting_rules: List[ConflictingRule] = Field(default_factory=list)
    
    @property
    def rule_ids(self) -> List[str]:
        return [r.rule_id for r in self.conflicting_rules]


class ConflictSummary(BaseModel):
    total: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    resolution_methods: Dict[str, int] = Field(default_factory=dict)
    conflicts: List[Conflict] = Field(default_factory=list)
    
    @classmethod
    def from_conflicts(cls, conflicts: List[Conflict]) -> "ConflictSummary":
        by_type: Dict[str, int] = {}
        methods: Dict[str, int] = {}
        for conflict in conflicts:
            by_type[conflict.conflict_type.value] = by_type.get(conflict.conflict_type.value, 0) + 1
            methods[conflict.resolution_strategy.value] = methods.get(conflict.resolution_strategy.value, 0) + 1
        return cls(total=len(conflicts), by_type=by_type, resolution_methods=methods, conflicts=conflicts)
