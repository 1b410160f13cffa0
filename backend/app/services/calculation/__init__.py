from .bracket_calculator import (
    BracketCalculator,
    calculate_progressive_tax,
    lookup_single_bracket_tax,
    taxable_income_from
)

__all__ = [
    "BracketCalculator",
    "calculate_progressive_tax",
    "lookup_single_bracket_tax",
    "taxable_income_from",
]
