"""
Rule Aggregation

Reconciles evidence rules into one aggregated rule per tax type and date.

Usage:
    from app.services.aggregation import RuleAggregationEngine
    
    engine = RuleAggregationEngine(db, merger=merger)
    result = engine.aggregate("paye", date(2025, 4, 1))
"""

from .conflict_detector import ConflictDetector
from .rule_selector import select_best_rule
from .bracket_materializer import BracketMaterializer, MaterializationResult, normalize_rate
from .merger import (
    BaseRuleMerger,
    IntelligentRuleMerger,
    build_merge_prompt,
    build_rule_merger,
    validate_merged_rule
)
from .persister import AggregationPersister
from .engine import RuleAggregationEngine


__all__ = [
    "ConflictDetector",
    "select_best_rule",
    "BracketMaterializer",
    "MaterializationResult",
    "normalize_rate",
    "BaseRuleMerger",
    "IntelligentRuleMerger",
    "build_merge_prompt",
    "build_rule_merger",
    "validate_merged_rule",
    "AggregationPersister",
    "RuleAggregationEngine",
]
