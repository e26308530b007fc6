# backend/ridepay/core/exceptions.py
"""
Domain-specific exceptions for the RidePay payments service.

Every lifecycle operation raises one of these so callers (HTTP routes,
the capture worker, Celery tasks) can tell a retryable processor hiccup
apart from an illegal state change or a broken deployment.
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
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Payment lifecycle exceptions
class PaymentValidationError(ValidationException):
    """Input rejected before any processor call was made."""


class PaymentNotFoundError(NotFoundException):
    def __init__(self, payment_intent_id: str) -> None:
        super().__init__(
            f"Payment intent {payment_intent_id} not found",
            details={"payment_intent_id": payment_intent_id},
        )
        self.payment_intent_id = payment_intent_id


class StateConflictError(ConflictException):
    """
    Raised when the stored lifecycle state does not allow the operation.

    Carries both the locally stored status and the status reported by the
    processor (when one was fetched) so operators can see which side moved.
    """

    def __init__(
        self,
        message: str,
        *,
        local_status: Optional[str] = None,
        processor_status: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(details or {})
        merged.update({"local_status": local_status, "processor_status": processor_status})
        super().__init__(message, details=merged)
        self.local_status = local_status
        self.processor_status = processor_status


class InvalidStateError(StateConflictError):
    """A lifecycle operation was requested from a state it is not legal in."""


class ProcessorError(ServiceException):
    """Base class for failures reported by the payment processor."""

    status_code = status.HTTP_502_BAD_GATEWAY
    retryable: bool = False


class TransientProcessorError(ProcessorError):
    """Timeouts, connection failures, rate limits and processor 5xx responses."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


class ProcessorRejectedError(ProcessorError):
    """The processor refused the request; repeating it will not help."""

    status_code = HTTP_422_UNPROCESSABLE


class ConfigurationError(ServiceException):
    """Credentials are missing or rejected. Fatal for the whole run."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
