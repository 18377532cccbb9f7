"""
Domain error taxonomy shared by the marketplace and payment_system apps.

Services raise these internally; the public service methods convert them into
``ServiceResult`` failures (see ``BaseService.returns_result``) so views can map
them onto HTTP responses without inspecting exception types.
"""

from typing import Iterable, Optional


class ErrorCodes:
    """Standard error codes used across services and API responses."""

    VALIDATION_ERROR = "validation_error"
    PERMISSION_DENIED = "permission_denied"
    INVALID_TRANSITION = "invalid_transition"
    PRECONDITION_FAILED = "precondition_failed"
    CONFLICT = "conflict"
    EXTERNAL_SERVICE_ERROR = "external_service_error"
    AMOUNT_MISMATCH = "amount_mismatch"
    NOT_FOUND = "not_found"

    # Internal errors
    INTERNAL_ERROR = "internal_error"


class DomainError(Exception):
    """Base class for expected, caller-correctable failures."""

    code = ErrorCodes.INTERNAL_ERROR

    def __init__(self, message: str = "", errors: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.message = message or self.__class__.__name__
        self.errors = list(errors or [])

    def __str__(self):
        return self.message


class ValidationError(DomainError):
    """Malformed or missing request fields."""

    code = ErrorCodes.VALIDATION_ERROR


class AuthorizationError(DomainError):
    """Actor is not the buyer, seller or admin of the resource."""

    code = ErrorCodes.PERMISSION_DENIED


class InvalidTransition(DomainError):
    """A state machine transition outside the allowed table."""

    code = ErrorCodes.INVALID_TRANSITION

    def __init__(self, entity: str, old_status: Optional[str], new_status: str, message: str = ""):
        self.entity = entity
        self.old_status = old_status
        self.new_status = new_status
        super().__init__(message or f"Invalid {entity} transition from {old_status} to {new_status}.")


class PreconditionFailed(DomainError):
    code = ErrorCodes.PRECONDITION_FAILED


class ConflictError(DomainError):
    code = ErrorCodes.CONFLICT


class ExternalServiceError(DomainError):
    """Gateway failure or timeout. ``detail`` is for logs only."""

    code = ErrorCodes.EXTERNAL_SERVICE_ERROR

    def __init__(self, message: str = "", detail: str = "", timed_out: bool = False):
        super().__init__(message or "Payment provider request failed. Please try again later.")
        self.detail = detail
        self.timed_out = timed_out


class AmountMismatchError(DomainError):
    """Webhook amount does not reconcile with the matched orders."""

    code = ErrorCodes.AMOUNT_MISMATCH

    def __init__(self, reference: str, expected, received):
        self.reference = reference
        self.expected = expected
        self.received = received
        super().__init__(f"Amount mismatch for reference {reference}. Expected: {expected}, Got: {received}")


class NotFoundError(DomainError):
    code = ErrorCodes.NOT_FOUND
