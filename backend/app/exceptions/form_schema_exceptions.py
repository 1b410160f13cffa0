from fastapi import status
from .base import AppException

class FormSchemaGenerationFailed(AppException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    detail = "Form schema could not be generated from the available rules."

class FormSchemaNotFound(AppException):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "No form schema found."
