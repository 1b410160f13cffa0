"""
Bracket Materializer

Turns the bracket list declared inside a rule payload into canonical
tax_brackets rows for the rule that owns them.

- Rates given as a percentage are divided by 100
- Rates above the storage ceiling are dropped with a warning, never clamped
- Declared order (or array position) sets the sequence; stored orders are
  renumbered 1..N so they stay contiguous after drops
- The owner's bracket set is always replaced wholesale
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Any
import logging

from sqlalchemy.orm import Session

from app.crud import crud_bracket
from app.models.tax_rule import TaxBracket, MAX_BRACKET_RATE
from app.schema.rule_data import RuleData, BracketSpec
from app.schema.tax_rule import BracketCreate

logger = logging.getLogger(__name__)

RATE_CEILING = Decimal(str(MAX_BRACKET_RATE))
RATE_PLACES = Decimal("0.0001")
MONEY_PLACES = Decimal("0.01")


@dataclass
class MaterializationResult:
    """Canonical rows plus what had to be left out."""
    brackets: List[BracketCreate] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    skipped: int = 0

    @property
    def count(self) -> int:
        return len(self.brackets)

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)
        logger.warning(f"Bracket warning: {warning}")


def parse_amount(value: Any) -> Optional[Decimal]:
    """Decimal from a number or text like "300,000"; None if unreadable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).replace(",", "").strip())
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() else None


def normalize_rate(bracket: BracketSpec) -> Optional[Decimal]:
    """
    Express a bracket's rate as a fraction.

    rate_percent and "%"-suffixed strings are percentages. A bare rate
    above 1 is read as a percentage too (rate=6 means 6%).
    """
    if bracket.rate_percent is not None:
        percent = bracket.rate_percent
        if isinstance(percent, str):
            percent = percent.strip().rstrip("%")
        percent = parse_amount(percent)
        return percent / 100 if percent is not None else None

    rate = bracket.rate
    if isinstance(rate, str) and rate.strip().endswith("%"):
        percent = parse_amount(rate.strip()[:-1])
        return percent / 100 if percent is not None else None

    value = parse_amount(rate)
    if value is None:
        return None
    return value / 100 if value > 1 else value


class BracketMaterializer:
    """
    Builds and stores canonical bracket rows.

    Usage:
        materializer = BracketMaterializer()
        result = materializer.materialize(rule_data)
        materializer.store(db, rule_id, result)
    """

    def materialize(self, rule_data: RuleData) -> MaterializationResult:
        result = MaterializationResult()

        # (sequence key, position, spec); declared order first, array position as fallback
        entries = [
            (spec.order if spec.order is not None else position, position, spec)
            for position, spec in enumerate(rule_data.brackets or [], start=1)
        ]
        entries.sort(key=lambda entry: (entry[0], entry[1]))

        for sequence, position, spec in entries:
            rate = normalize_rate(spec)
            if rate is None:
                result.skipped += 1
                result.add_warning(f"Bracket {position} has no usable rate, skipped")
                continue
            if rate > RATE_CEILING or rate < 0:
                result.skipped += 1
                result.add_warning(
                    f"Bracket {position} rate {rate} is outside 0..{RATE_CEILING}, skipped"
                )
                continue

            result.brackets.append(BracketCreate(
                min_income=self._money(spec.min_income),
                max_income=self._money(spec.max_income),
                rate=rate.quantize(RATE_PLACES),
                fixed_amount=self._money(spec.fixed_amount) or Decimal("0.00"),
                bracket_order=len(result.brackets) + 1
            ))

        return result

    def store(self, db: Session, rule_id: str, result: MaterializationResult) -> List[TaxBracket]:
        """Replace the owner's brackets with result's rows (caller commits)."""
        rows = crud_bracket.replace_brackets(db, rule_id, result.brackets)
        logger.info(f"Stored {len(rows)} brackets for rule {rule_id}")
        return rows

    @staticmethod
    def _money(value: Any) -> Optional[Decimal]:
        amount = parse_amount(value)
        return amount.quantize(MONEY_PLACES) if amount is not None else None
