# backend/app/core/exceptions.py
"""
Domain-specific exceptions for the payments backend.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

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
        """Default conversion to HTTPException (override in subclasses)."""
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=HTTP_422_UNPROCESSABLE,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


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


# Specific payment exceptions


class InvalidAmountException(ValidationException):
    """Raised when a monetary amount is not a positive finite number."""

    def __init__(self, amount: Any):
        super().__init__(
            message="Invalid amount",
            code="invalid_amount",
            details={"amount": str(amount)},
        )


class InvalidIdentifierException(ValidationException):
    """Raised when a required identifier is missing or empty."""

    def __init__(self, field: str):
        super().__init__(
            message=f"Invalid ID: {field}",
            code="invalid_id",
            details={"field": field},
        )


class MalformedEventException(ValidationException):
    """Raised when a webhook event lacks an id, a type or a payload object.

    Permanent rejection: the event is never retried.
    """

    def __init__(self, reason: str, *, event_id: Optional[str] = None):
        super().__init__(
            message=f"Malformed webhook event: {reason}",
            code="malformed_event",
            details={"event_id": event_id, "reason": reason},
        )


class PaymentProcessorException(ServiceException):
    """Raised when Stripe rejects a request (authorization, transfer, refund)."""

    def __init__(
        self,
        message: str,
        *,
        processor_code: Optional[str] = None,
        error_type: Optional[str] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(
            message=message,
            code=processor_code or "processor_error",
            details={"type": error_type, "status": http_status},
        )
        self.processor_code = processor_code
        self.error_type = error_type
        self.http_status = http_status

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class WebhookProcessingException(ServiceException):
    """Raised when a webhook handler keeps failing after every retry attempt."""

    def __init__(self, event_id: str, event_type: str, attempts: int, last_error: str):
        super().__init__(
            message=f"Webhook {event_type} ({event_id}) failed after {attempts} attempts",
            code="webhook_processing_failed",
            details={
                "event_id": event_id,
                "event_type": event_type,
                "attempts": attempts,
                "last_error": last_error,
            },
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
