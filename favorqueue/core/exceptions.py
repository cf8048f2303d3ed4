"""
Custom exceptions for the Favor Queue service.
Provides structured error handling with proper HTTP status codes and messages.
"""

from typing import Any, Dict, Optional
from fastapi import HTTPException, status


class BusinessLogicError(Exception):
    """Base exception for business logic errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(BusinessLogicError):
    """Raised when input validation fails."""
    pass


class NotFoundError(BusinessLogicError):
    """Raised when a requested resource is not found."""
    pass


class ConflictError(BusinessLogicError):
    """Raised when there's a conflict with existing data."""
    pass


class InvalidTransitionError(ConflictError):
    """Raised when a ticket is asked to move to a state it cannot reach."""
    pass


class NumberingError(BusinessLogicError):
    """Raised when ticket numbers cannot be assigned."""
    pass


class CounterUnavailableError(NumberingError):
    """Raised when the creator's counter row cannot be read back after insert."""
    pass


def business_exception_to_http(exc: BusinessLogicError) -> HTTPException:
    """Convert business logic exceptions to appropriate HTTP exceptions."""

    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": exc.message, "type": "validation_error", **exc.details}
        )

    if isinstance(exc, NotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": exc.message, "type": "not_found", **exc.details}
        )

    if isinstance(exc, InvalidTransitionError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": exc.message, "type": "invalid_transition", **exc.details}
        )

    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": exc.message, "type": "conflict", **exc.details}
        )

    if isinstance(exc, NumberingError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": exc.message, "type": "numbering_error", **exc.details}
        )

    # Default to 500 for other business logic errors
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"message": exc.message, "type": "business_logic_error", **exc.details}
    )


class ErrorHandler:
    """Centralized validation helpers."""

    @staticmethod
    def validate_creator_slug(value: Any) -> str:
        """Validate a creator slug: non-empty, no whitespace."""
        if not isinstance(value, str) or not value.strip() or any(c.isspace() for c in value):
            raise ValidationError(
                "creator_slug must be a non-empty string without whitespace",
                {"field": "creator_slug", "value": value}
            )
        return value

    @staticmethod
    def validate_non_negative_integer(value: Any, field_name: str) -> int:
        """Validate that a value is a non-negative integer."""
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ValidationError(
                f"{field_name} must be a non-negative integer",
                {"field": field_name, "value": value}
            )
        return value
