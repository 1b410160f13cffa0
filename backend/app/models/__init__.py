"""
Models Package

Exports all SQLAlchemy models and enums for the tax rule aggregation system.
"""

from app.database import Base, engine

from .document import (
    SourceDocument,
    DocumentStatus
)

from .tax_rule import (
    TaxRule,
    TaxBracket,
    TaxType,
    RuleType,
    BRACKET_BASED_TYPES,
    MAX_BRACKET_RATE
)

from .provenance import RuleProvenance

from .aggregation_run import (
    AggregationRun,
    AggregationRunStatus
)

from .form_schema import FormSchema


# Uncomment to recreate all tables (use with caution!)
# Base.metadata.drop_all(bind=engine)
# Base.metadata.create_all(bind=engine)


__all__ = [
    # Base
    "Base",
    "engine",
    
    # Document models
    "SourceDocument",
    "DocumentStatus",
    
    # Rule models
    "TaxRule",
    "TaxBracket",
    "TaxType",
    "RuleType",
    "BRACKET_BASED_TYPES",
    "MAX_BRACKET_RATE",
    
    # Provenance
    "RuleProvenance",
    
    # Audit models
    "AggregationRun",
    "AggregationRunStatus",
    
    # Form schemas
    "FormSchema",
]
