"""
Application Services

Services contain the business logic that sits between API routes and data access.
"""

from . import aggregation
from . import forms
from . import calculation

__all__ = ["aggregation", "forms", "calculation"]
