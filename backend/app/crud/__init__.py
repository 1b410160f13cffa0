"""
CRUD Package

Exports all CRUD operation modules for the tax rule aggregation system.
"""

from app.crud import crud_tax_rule
from app.crud import crud_bracket
from app.crud import crud_provenance
from app.crud import crud_aggregation_run
from app.crud import crud_form_schema


__all__ = [
    "crud_tax_rule",
    "crud_bracket",
    "crud_provenance",
    "crud_aggregation_run",
    "crud_form_schema",
]
