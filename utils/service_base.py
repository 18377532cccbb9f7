"""
Base classes and utilities for the service layer.

This module provides the ServiceResult pattern (inspired by Rust's Result type)
and the BaseService class shared by the marketplace and payment services.

Guidelines
- Keep services free of request objects; pass users and ids explicitly.
- Return structured results instead of raising for expected outcomes.
- Reserve exceptions for truly exceptional/unrecoverable scenarios.
"""

import logging
import time
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Generic, List, Optional, TypeVar

from utils.exceptions import DomainError, ErrorCodes

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    A result type that encapsulates success or failure from service operations.

    Attributes:
        ok: True if operation succeeded, False otherwise
        value: The success value (present if ok=True)
        error: Error code from ErrorCodes (present if ok=False)
        error_detail: Human-readable error message (present if ok=False)
        errors: Field-level messages for validation failures

    Examples:
        >>> result = service_ok(order)
        >>> if result.ok:
        ...     return Response({"order": result.value}, 200)

        >>> result = service_err(ErrorCodes.NOT_FOUND, "Order 123 not found")
        >>> print(result.error_detail)  # "Order 123 not found"
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_detail: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """
        Convert to dictionary for JSON serialization.

        Returns:
            Dictionary with 'success' and either 'data' or 'error'
        """
        if self.ok:
            return {"success": True, "data": self.value}
        payload = {"code": self.error, "message": self.error_detail}
        if self.errors:
            payload["errors"] = self.errors
        return {"success": False, "error": payload}


def service_ok(value: T = None) -> ServiceResult[T]:
    """Create a successful ServiceResult."""
    return ServiceResult(ok=True, value=value)


def service_err(error: str, error_detail: str = "", errors: Optional[List[str]] = None) -> ServiceResult:
    """
    Create a failed ServiceResult.

    Args:
        error: Error code (e.g., ErrorCodes.INVALID_TRANSITION)
        error_detail: Human-readable error message
        errors: Optional list of field-level messages
    """
    return ServiceResult(ok=False, error=error, error_detail=error_detail or error, errors=list(errors or []))


def paginate(queryset, page: int = 1, page_size: int = 20, max_page_size: int = 100) -> dict:
    """Offset pagination shared by the list operations."""
    page = max(int(page or 1), 1)
    page_size = min(max(int(page_size or 20), 1), max_page_size)
    offset = (page - 1) * page_size
    total_count = queryset.count()
    return {
        "results": list(queryset[offset : offset + page_size]),
        "count": total_count,
        "page": page,
        "page_size": page_size,
        "num_pages": (total_count + page_size - 1) // page_size,
    }


class BaseService:
    """
    Base class for all services providing common functionality.

    Provides:
    - Logging with class name
    - Performance timing decorator
    - DomainError to ServiceResult conversion

    Usage:
        class EscrowService(BaseService):
            @BaseService.log_performance
            @BaseService.returns_result
            def confirm_receipt(self, buyer, order_id):
                ...
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__module__ + "." + self.__class__.__name__)

    @staticmethod
    def log_performance(func: Callable) -> Callable:
        """
        Decorator to log performance of service methods.

        Logs execution time and any errors that occur.
        """

        @wraps(func)
        def wrapper(self, *args, **kwargs):
            start_time = time.time()
            method_name = f"{self.__class__.__name__}.{func.__name__}"

            try:
                self.logger.debug(f"{method_name} started")
                result = func(self, *args, **kwargs)
                elapsed_time = (time.time() - start_time) * 1000

                if isinstance(result, ServiceResult):
                    if result.ok:
                        self.logger.info(f"{method_name} completed successfully in {elapsed_time:.2f}ms")
                    else:
                        self.logger.warning(
                            f"{method_name} failed with error '{result.error}' in {elapsed_time:.2f}ms"
                        )
                else:
                    self.logger.info(f"{method_name} completed in {elapsed_time:.2f}ms")

                return result

            except Exception as e:
                elapsed_time = (time.time() - start_time) * 1000
                self.logger.error(
                    f"{method_name} raised exception after {elapsed_time:.2f}ms: {str(e)}",
                    exc_info=True,
                )
                raise

        return wrapper

    @staticmethod
    def returns_result(func: Callable) -> Callable:
        """
        Decorator converting a raised DomainError into a failed ServiceResult.

        Plain return values are wrapped with service_ok(); ServiceResult values
        pass through untouched. Unexpected exceptions propagate.
        """

        @wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                result = func(self, *args, **kwargs)
            except DomainError as e:
                return service_err(e.code, e.message, e.errors)
            if isinstance(result, ServiceResult):
                return result
            return service_ok(result)

        return wrapper


__all__ = [
    "BaseService",
    "ErrorCodes",
    "ServiceResult",
    "service_ok",
    "service_err",
    "paginate",
]
