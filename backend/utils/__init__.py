"""
Utils Package

Provides utility modules for:
- validation_errors: Structured error bodies for API responses
"""

from .validation_errors import (
    ValidationErrorResponse,
    raise_missing_parameter,
    raise_invalid_parameter,
    raise_not_found,
    raise_conflict,
    raise_service_unavailable,
)

__all__ = [
    'ValidationErrorResponse',
    'raise_missing_parameter',
    'raise_invalid_parameter',
    'raise_not_found',
    'raise_conflict',
    'raise_service_unavailable',
]
