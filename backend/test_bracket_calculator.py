"""
Bracket Calculator - Test Suite

Both readings of a rate table are kept side by side; these tests pin
down what each one returns.

Run with: python -m pytest test_bracket_calculator.py -v
"""

from datetime import date
from decimal import Decimal

import pytest

from app.exceptions.calculation_exceptions import AggregatedRuleNotFound, InvalidCalculationInput
from app.services.aggregation import RuleAggregationEngine
from app.services.calculation import (
    BracketCalculator,
    calculate_progressive_tax,
    lookup_single_bracket_tax,
    taxable_income_from
)

BANDS = [
    {"min_income": 0, "max_income": 300000, "rate": 0.06, "fixed_amount": 0, "bracket_order": 1},
    {"min_income": 300000, "max_income": None, "rate": 0.12, "fixed_amount": 0, "bracket_order": 2},
]


def test_progressive_summation():
    total, breakdown = calculate_progressive_tax(Decimal("400000"), BANDS)

    assert total == Decimal("30000.00")  # 300000 * 6% + 100000 * 12%
    assert [b.tax for b in breakdown] == [18000.0, 12000.0]
    assert [b.taxable_amount for b in breakdown] == [300000.0, 100000.0]


def test_income_below_first_band_edge():
    total, breakdown = calculate_progressive_tax(Decimal("100000"), BANDS)

    assert total == Decimal("6000.00")
    assert len(breakdown) == 1


def test_fixed_amount_readings_differ():
    """The summation adds fixed_amount per band reached; the lookup subtracts one offset."""
    bands = [
        {"min_income": 0, "max_income": 1000, "rate": 0.1, "fixed_amount": 0, "bracket_order": 1},
        {"min_income": 1000, "max_income": None, "rate": 0.2, "fixed_amount": 100, "bracket_order": 2},
    ]

    total, _ = calculate_progressive_tax(Decimal("2000"), bands)
    single = lookup_single_bracket_tax(Decimal("2000"), bands)

    assert total == Decimal("400.00")   # 1000*0.1 + (1000*0.2 + 100)
    assert single == Decimal("300.00")  # 2000*0.2 - 100
    assert total != single


def test_lookup_outside_every_band():
    assert lookup_single_bracket_tax(Decimal("50"), [{"min_income": 100, "rate": 0.1, "bracket_order": 1}]) is None


def test_taxable_income_from_form_data():
    assert taxable_income_from({"salary": "1,200.50"}) == Decimal("1200.50")
    assert taxable_income_from({"income": 5, "taxable_income": 7}) == Decimal("7")

    with pytest.raises(InvalidCalculationInput):
        taxable_income_from({"age": 30})
    with pytest.raises(InvalidCalculationInput):
        taxable_income_from({"income": "lots"})
    with pytest.raises(InvalidCalculationInput):
        taxable_income_from({"income": -1})


def test_calculator_uses_aggregated_brackets(db, add_rule, income_rule_data):
    add_rule("income_tax", income_rule_data, rule_id="evidence")
    aggregated = RuleAggregationEngine(db).aggregate("income_tax", date(2025, 1, 1))

    result = BracketCalculator(db).calculate("income_tax", {"annual_income": 400000}, date(2025, 3, 1))

    assert result.rule_id == aggregated.aggregated_rule_id
    assert result.total_tax == 30000.0
    assert result.single_bracket_tax == 48000.0
    assert len(result.breakdown) == 2


def test_calculator_needs_aggregated_rule(db):
    with pytest.raises(AggregatedRuleNotFound):
        BracketCalculator(db).calculate("income_tax", {"annual_income": 1}, date(2025, 1, 1))
