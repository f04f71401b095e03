"""
Structured Error Utilities

Standardized error bodies so API clients can tell a rejected input from
a missing record, a state conflict or a store outage.

Error Response Format:
{
    "error": "missing_parameter" | "invalid_parameter" | "not_found"
             | "invalid_state" | "service_unavailable",
    "parameter": "transaction_id",
    "message": "transaction_id is required"
}
"""

from fastapi import HTTPException, status
from typing import Optional, Any


class ValidationErrorResponse:
    """Structured error response builder."""

    @staticmethod
    def missing_parameter(parameter: str, message: Optional[str] = None) -> dict:
        return {
            "error": "missing_parameter",
            "parameter": parameter,
            "message": message or f"{parameter} is required"
        }

    @staticmethod
    def invalid_parameter(parameter: Optional[str], message: str, value: Optional[Any] = None) -> dict:
        """
        Create an invalid parameter error response.

        Args:
            parameter: Name of the invalid parameter
            message: Description of the validation error
            value: The invalid value (optional, for debugging)
        """
        response = {
            "error": "invalid_parameter",
            "parameter": parameter,
            "message": message
        }
        if value is not None:
            response["received_value"] = str(value)[:100]  # Truncate for safety
        return response

    @staticmethod
    def not_found(resource: str, resource_id: str, message: Optional[str] = None) -> dict:
        return {
            "error": "not_found",
            "resource": resource,
            "resource_id": resource_id,
            "message": message or f"{resource} {resource_id} not found"
        }

    @staticmethod
    def conflict(error: str, message: str, details: Optional[dict] = None) -> dict:
        response = {
            "error": error,
            "message": message
        }
        if details:
            response.update(details)
        return response


def raise_missing_parameter(parameter: str, message: Optional[str] = None):
    """
    Raise HTTPException with structured missing parameter error.

    Raises:
        HTTPException with 422 status and structured error body
    """
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.missing_parameter(parameter, message)
    )


def raise_invalid_parameter(parameter: Optional[str], message: str, value: Optional[Any] = None):
    """
    Raise HTTPException with structured invalid parameter error.

    Raises:
        HTTPException with 422 status and structured error body
    """
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.invalid_parameter(parameter, message, value)
    )


def raise_not_found(resource: str, resource_id: str, message: Optional[str] = None):
    """Raise HTTPException with a structured 404 body."""
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=ValidationErrorResponse.not_found(resource, resource_id, message)
    )


def raise_conflict(error: str, message: str, details: Optional[dict] = None):
    """Raise HTTPException with a structured 409 body."""
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=ValidationErrorResponse.conflict(error, message, details)
    )


def raise_service_unavailable(message: str, operation: Optional[str] = None):
    """Raise HTTPException with a structured 503 body."""
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "error": "service_unavailable",
            "operation": operation,
            "message": message
        }
    )
