# backend/consultbook/core/exceptions.py
"""
Domain-specific exceptions for the booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to HTTPException using the class status code."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """Raised when user is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class InvalidRangeException(ValidationException):
    """Raised when a booking interval is inverted or too short."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVALID_RANGE", details=details)


class OutsideAvailabilityException(BusinessRuleException):
    """Raised when a requested interval does not fit any enabled schedule window."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "Requested time is outside the professional's availability",
            code="OUTSIDE_AVAILABILITY",
            details=details,
        )


class BookingConflictException(ConflictException):
    """Raised when a booking conflicts with existing bookings."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="BOOKING_CONFLICT",
            details=details or {},
        )


class InvalidStateException(BusinessRuleException):
    """Raised when an entity is not in a state that allows the operation."""

    def __init__(
        self,
        message: str,
        *,
        current_state: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        payload = dict(details or {})
        if current_state is not None:
            payload["current_state"] = current_state
        super().__init__(message=message, code="INVALID_STATE", details=payload)


class AmountMismatchException(ValidationException):
    """Raised when a submitted amount does not match the expected amount."""

    def __init__(self, expected: Any, provided: Any, message: Optional[str] = None):
        super().__init__(
            message=message or "Amount mismatch",
            code="AMOUNT_MISMATCH",
            details={"expected": str(expected), "provided": str(provided)},
        )


class PaymentFailedException(DomainException):
    """Raised when a payment gateway cannot start or complete a payment."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        gateway: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        payload = dict(details or {})
        if gateway:
            payload["gateway"] = gateway
        super().__init__(
            message=message or "Payment gateway request failed",
            code="PAYMENT_FAILED",
            details=payload,
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
