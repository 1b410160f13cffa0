"""
Deterministic Rule Selector

Picks the single best evidence rule. Used directly when only one rule
exists and as the fallback when the intelligent merge fails.
"""

from typing import List

from app.schema.tax_rule import EvidenceRule


def select_best_rule(rules: List[EvidenceRule]) -> EvidenceRule:
    """
    Return the best evidence rule.
    
    Priority:
    1. Rules with extracted field metadata or required variables
    2. Higher source authority rank
    3. Earlier position in the accessor's ordering (more recent first)
    
    Pure and deterministic: the same list always yields the same rule.
    """
    if not rules:
        raise ValueError("select_best_rule needs at least one rule")
    
    best_index = min(
        range(len(rules)),
        key=lambda i: (not rules[i].rule_data.has_inputs, -rules[i].source_rank, i)
    )
    return rules[best_index]
