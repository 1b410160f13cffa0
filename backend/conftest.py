"""
Shared pytest fixtures.

Every test gets its own in-memory SQLite database (JSON columns fall back
from JSONB to JSON there), plus factories for documents and evidence rules
and stand-in mergers so nothing talks to the model service.

Run with: python -m pytest -v
"""

from datetime import date
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app import models  # noqa: F401  registers every table on Base.metadata
from app.models import SourceDocument, TaxRule
from app.exceptions.aggregation_exceptions import MergeFailed
from app.schema import Conflict, EvidenceRule, RuleData
from app.services.aggregation import BaseRuleMerger, validate_merged_rule


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False)

    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def add_document(db):
    """Factory: add_document(authority="...", rank=0) -> SourceDocument"""
    def _add(authority: str = "Revenue Authority", rank: int = 0, filename: str = "guide.pdf") -> SourceDocument:
        document = SourceDocument(filename=filename, source_authority=authority, source_rank=rank)
        db.add(document)
        db.commit()
        db.refresh(document)
        return document
    return _add


@pytest.fixture
def add_rule(db):
    """Factory: add_rule(tax_type, rule_data, ...) -> TaxRule (evidence)"""
    def _add(
        tax_type: str,
        rule_data: Dict[str, Any],
        rule_id: Optional[str] = None,
        effective_date: Optional[date] = date(2025, 1, 1),
        expiry_date: Optional[date] = None,
        document: Optional[SourceDocument] = None,
        title: str = "Extracted rule"
    ) -> TaxRule:
        rule = TaxRule(
            rule_category=tax_type,
            rule_type="extracted",
            title=title,
            rule_data=rule_data,
            effective_date=effective_date,
            expiry_date=expiry_date,
            document_source_id=document.id if document else None
        )
        if rule_id:
            rule.id = rule_id
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule
    return _add


def make_evidence(rule_id: str, rule_data: Dict[str, Any], **kwargs) -> EvidenceRule:
    """Evidence rule built without touching the database."""
    return EvidenceRule(
        id=rule_id,
        rule_category=kwargs.pop("rule_category", "income_tax"),
        title=kwargs.pop("title", rule_id),
        rule_data=RuleData.from_payload(rule_data),
        **kwargs
    )


@pytest.fixture
def evidence():
    return make_evidence


# =============================================================================
# MERGER STAND-INS
# =============================================================================

class StaticMerger(BaseRuleMerger):
    """Answers every merge with a fixed payload, validated like a real answer."""

    def __init__(self, payload: Dict[str, Any]):
        self.payload = payload
        self.calls = 0

    def merge(self, rules: List[EvidenceRule], conflicts: List[Conflict]) -> RuleData:
        self.calls += 1
        return validate_merged_rule(self.payload, {rule.id for rule in rules})


class FailingMerger(BaseRuleMerger):

    def __init__(self):
        self.calls = 0

    def merge(self, rules: List[EvidenceRule], conflicts: List[Conflict]) -> RuleData:
        self.calls += 1
        raise MergeFailed("model service unavailable")


@pytest.fixture
def static_merger():
    return StaticMerger


@pytest.fixture
def failing_merger():
    return FailingMerger()


class FakeClient:
    """Stands in for GeminiClient: returns canned text, records prompts."""

    def __init__(self, text: str = "", error: Exception = None):
        self.text = text
        self.error = error
        self.prompts: List[str] = []

    def generate(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def fake_client():
    return FakeClient


# =============================================================================
# SAMPLE PAYLOADS
# =============================================================================

@pytest.fixture
def income_rule_data():
    """An income tax payload with two brackets and one income input."""
    return {
        "required_variables": ["annual_income"],
        "field_metadata": {
            "annual_income": {"type": "number", "title": "Annual income", "minimum": 0}
        },
        "ui_order": ["annual_income"],
        "formulas": [
            {"name": "income_tax", "expression": "progressive(annual_income)", "output_field": "tax_due", "order": 1}
        ],
        "brackets": [
            {"min_income": 0, "max_income": 300000, "rate_percent": 6, "order": 1},
            {"min_income": 300000, "max_income": None, "rate_percent": 12, "order": 2},
        ],
    }
