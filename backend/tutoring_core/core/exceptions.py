# backend/tutoring_core/core/exceptions.py
"""
Domain-specific exceptions for the tutoring booking core.

These exceptions carry business-focused, user-visible messages and know
how to convert themselves into HTTP errors for whichever API layer hosts
the core services.
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
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when a request is invalid: expired, insufficient, over capacity, policy."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when an entity is absent or not owned by the caller."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised for duplicates, already-booked seats and unique constraint hits."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """Raised when the caller has no identity context."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ServiceException(DomainException):
    """Raised when a service operation fails unexpectedly."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class InsufficientCreditsException(ValidationException):
    """Raised when an allowance cannot cover the credits a session needs."""

    def __init__(self, required: int, available: int):
        super().__init__(
            message=(
                f"No remaining sessions for this package. "
                f"Required: {required}, Available: {available}"
            ),
            code="INSUFFICIENT_CREDITS",
            details={"required": required, "available": available},
        )


class PackageExpiredException(ValidationException):
    """Raised when a debit targets a package past its expiry."""

    def __init__(self, package_id: str):
        super().__init__(
            message="Package has expired",
            code="PACKAGE_EXPIRED",
            details={"package_id": package_id},
        )


class SessionCapacityException(ValidationException):
    """Raised when a seat operation disagrees with the session's capacity."""

    def __init__(self, message: str, *, session_id: str):
        super().__init__(
            message=message,
            code="SESSION_CAPACITY",
            details={"session_id": session_id},
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


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as connection issues,
    query failures or constraint violations. Services translate it into
    a domain exception before it reaches callers.
    """


class IntegrityConflictError(RepositoryException):
    """A write was rejected by a unique or foreign key constraint."""
