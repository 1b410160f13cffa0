"""
Bracket Calculator

Computes tax from the stored brackets of the aggregated rule in force.

Two readings of a rate table are supported:
- calculate_progressive_tax: every band the income reaches contributes
  overlap * rate + fixed_amount (the summation the forms use)
- lookup_single_bracket_tax: only the band containing the income applies,
  income * rate - fixed_amount ("if income <= X then income * rate - fixed")

The two read fixed_amount differently, and the summation adds it once per
band reached. Both are returned so the difference stays visible.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Dict, Any, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from app.crud import crud_tax_rule, crud_bracket
from app.exceptions.calculation_exceptions import AggregatedRuleNotFound, InvalidCalculationInput
from app.schema.form_schema import BracketBreakdown, CalculationResult

logger = logging.getLogger(__name__)

# Input names read as the taxable amount, in order of preference
TAXABLE_INCOME_KEYS = (
    "taxable_income",
    "annual_taxable_income",
    "taxable_amount",
    "annual_income",
    "gross_income",
    "income",
    "annual_salary",
    "salary",
    "taxable_supplies",
    "turnover",
)

ZERO = Decimal("0")
CENTS = Decimal("0.01")


def _dec(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _bracket_values(bracket: Any) -> Tuple[Decimal, Optional[Decimal], Decimal, Decimal, int]:
    """(min, max, rate, fixed, order) from a TaxBracket row or a dict."""
    get = bracket.get if isinstance(bracket, dict) else lambda key: getattr(bracket, key, None)
    return (
        _dec(get("min_income")) or ZERO,
        _dec(get("max_income")),
        _dec(get("rate")) or ZERO,
        _dec(get("fixed_amount")) or ZERO,
        get("bracket_order") or 0,
    )


def calculate_progressive_tax(income: Decimal, brackets: List[Any]) -> Tuple[Decimal, List[BracketBreakdown]]:
    """Sum overlap * rate + fixed_amount over every band with positive overlap."""
    total = ZERO
    breakdown = []

    for bracket in sorted(brackets, key=lambda b: _bracket_values(b)[4]):
        lower, upper, rate, fixed, order = _bracket_values(bracket)
        ceiling = income if upper is None else min(income, upper)
        overlap = ceiling - lower
        if overlap <= 0:
            continue

        tax = overlap * rate + fixed
        total += tax
        breakdown.append(BracketBreakdown(
            bracket_order=order,
            taxable_amount=float(overlap.quantize(CENTS)),
            rate=float(rate),
            fixed_amount=float(fixed),
            tax=float(tax.quantize(CENTS))
        ))

    return total.quantize(CENTS), breakdown


def lookup_single_bracket_tax(income: Decimal, brackets: List[Any]) -> Optional[Decimal]:
    """income * rate - fixed_amount of the band containing income; None if no band does."""
    for bracket in sorted(brackets, key=lambda b: _bracket_values(b)[4]):
        lower, upper, rate, fixed, _ = _bracket_values(bracket)
        if income >= lower and (upper is None or income <= upper):
            return (income * rate - fixed).quantize(CENTS)
    return None


def taxable_income_from(data: Dict[str, Any]) -> Decimal:
    """
    Pick the taxable amount out of submitted form data.

    Raises:
        InvalidCalculationInput: no known income field, or it is not a
            non-negative number
    """
    for key in TAXABLE_INCOME_KEYS:
        if key in data and data[key] not in (None, ""):
            try:
                amount = Decimal(str(data[key]).replace(",", "").strip())
            except InvalidOperation:
                raise InvalidCalculationInput(f"'{key}' is not a number")
            if amount < 0:
                raise InvalidCalculationInput(f"'{key}' must not be negative")
            return amount

    raise InvalidCalculationInput(f"Provide one of: {', '.join(TAXABLE_INCOME_KEYS)}")


class BracketCalculator:
    """
    Tax for submitted form data, using the aggregated rule's brackets.

    Usage:
        calculator = BracketCalculator(db)
        result = calculator.calculate("paye", {"taxable_income": 50000})
    """

    def __init__(self, db: Session):
        self.db = db

    def calculate(self, schema_type: str, data: Dict[str, Any], target_date: Optional[date] = None) -> CalculationResult:
        target_date = target_date or date.today()

        rule = crud_tax_rule.get_current_aggregated_rule(self.db, schema_type, target_date)
        if rule is None:
            raise AggregatedRuleNotFound(f"No aggregated {schema_type} rule in force on {target_date.isoformat()}")

        income = taxable_income_from(data)
        brackets = crud_bracket.get_brackets(self.db, rule.id)
        if not brackets:
            logger.warning(f"Aggregated rule {rule.id} has no stored brackets")

        total, breakdown = calculate_progressive_tax(income, brackets)
        single = lookup_single_bracket_tax(income, brackets)

        return CalculationResult(
            schema_type=schema_type,
            rule_id=rule.id,
            taxable_income=float(income),
            total_tax=float(total),
            breakdown=breakdown,
            single_bracket_tax=float(single) if single is not None else None
        )
