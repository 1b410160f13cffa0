"""
Rule Aggregation Exceptions

Failures raised while reconciling evidence rules into an aggregated rule.
Only MergeFailed (and its subtype) is absorbed by the engine; everything
else reaches the caller unchanged.
"""

from fastapi import status
from app.exceptions.base import AppException


# === EVIDENCE EXCEPTIONS ===

class NoEvidenceFound(AppException):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "No evidence rules found for this tax type and date."


# === MERGE EXCEPTIONS ===

class MergeFailed(AppException):
    """Raised when the intelligent merge cannot produce a usable rule."""
    status_code = status.HTTP_502_BAD_GATEWAY
    detail = "Intelligent rule merge failed."


class MergeValidationFailed(MergeFailed):
    """Raised when a merged rule references evidence outside the merge input."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    detail = "Merged rule failed validation."


class LLMServiceError(AppException):
    status_code = status.HTTP_502_BAD_GATEWAY
    detail = "Model service request failed."


# === BRACKET EXCEPTIONS ===

class NoBracketsForBracketBasedType(AppException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    detail = "Bracket-based tax type has no brackets."


# === PERSISTENCE EXCEPTIONS ===

class PersistenceFailed(AppException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Failed to persist aggregated rule."
