from fastapi import status
from .base import AppException

class AggregatedRuleNotFound(AppException):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "No aggregated rule in force for this tax type and date."

class InvalidCalculationInput(AppException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    detail = "Calculation input is missing or not numeric."
