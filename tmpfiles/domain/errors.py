"""
Error Handling Module

Defines domain exceptions and error categories for the storage core.
Domain exceptions are pure and have no external dependencies; callers
(HTTP handlers, tasks) map them to responses through ``to_dict()``.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    """Error category enumeration for structured error handling."""

    VALIDATION_FAILED = "validation_failed"
    FILE_TOO_LARGE = "file_too_large"
    FILE_NOT_FOUND = "file_not_found"
    FILE_EXPIRED = "file_expired"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    RECONCILIATION_FAILED = "reconciliation_failed"
    OPERATION_CANCELLED = "operation_cancelled"


# User-friendly error messages with actionable guidance
ERROR_MESSAGES: Dict[ErrorCategory, Dict[str, str]] = {
    ErrorCategory.VALIDATION_FAILED: {
        "title": "Invalid Upload",
        "message": "The upload parameters are outside the configured limits.",
        "action": "Check the TTL, MIME type and metadata and try again.",
    },
    ErrorCategory.FILE_TOO_LARGE: {
        "title": "File Too Large",
        "message": "The file exceeds the maximum allowed size.",
        "action": "Upload a smaller file.",
    },
    ErrorCategory.FILE_NOT_FOUND: {
        "title": "File Not Found",
        "message": "The requested file could not be found or has been deleted.",
        "action": "Please upload the file again.",
    },
    ErrorCategory.FILE_EXPIRED: {
        "title": "File Expired",
        "message": "The file has passed its time-to-live and is no longer available.",
        "action": "Please upload the file again to get a new link.",
    },
    ErrorCategory.BACKEND_UNAVAILABLE: {
        "title": "Storage Unavailable",
        "message": "The storage backend could not complete the request.",
        "action": "Please try again later.",
    },
    ErrorCategory.RECONCILIATION_FAILED: {
        "title": "Cleanup Failed",
        "message": "An orphaned object could not be removed.",
        "action": "It will be retried on the next cleanup cycle.",
    },
    ErrorCategory.OPERATION_CANCELLED: {
        "title": "Cancelled",
        "message": "The operation was cancelled before it completed.",
        "action": "Retry the request if it is still needed.",
    },
}


class DomainError(Exception):
    """
    Base exception for all storage domain errors.

    Domain exceptions can optionally wrap original errors for context.
    """

    category = ErrorCategory.BACKEND_UNAVAILABLE

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        """
        Initialize domain error.

        Args:
            message: Error message
            original_error: Optional original exception that caused this error
        """
        super().__init__(message)
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for API response.

        Returns:
            Dictionary with error information
        """
        info = ERROR_MESSAGES[self.category]
        return {
            "error": self.category.value,
            "title": info["title"],
            "message": info["message"],
            "action": info["action"],
            "detail": str(self),
        }


class ValidationError(DomainError):
    """Raised when TTL, MIME type, size or metadata is out of configured bounds."""

    category = ErrorCategory.VALIDATION_FAILED


class PayloadTooLargeError(ValidationError):
    """Raised when a payload exceeds the declared or maximum size."""

    category = ErrorCategory.FILE_TOO_LARGE


class NotFoundError(DomainError):
    """Raised when a record is unknown, or present but expired."""

    category = ErrorCategory.FILE_NOT_FOUND


class FileExpiredError(NotFoundError):
    """Raised when a record exists but its TTL has elapsed."""

    category = ErrorCategory.FILE_EXPIRED


class ObjectNotFoundError(NotFoundError):
    """Raised by a byte store when no object exists under a key."""
    pass


class BackendError(DomainError):
    """
    Raised when a byte store or metadata store I/O operation fails.

    Treated as transient and surfaced to the immediate caller without retry.
    """

    category = ErrorCategory.BACKEND_UNAVAILABLE


class ReconciliationFailure(DomainError):
    """Raised when a single orphaned object cannot be deleted."""

    category = ErrorCategory.RECONCILIATION_FAILED

    def __init__(self, key: str, original_error: Optional[Exception] = None):
        super().__init__(f"Failed to delete orphaned object {key}", original_error)
        self.key = key


class OperationCancelledError(DomainError):
    """Raised when a cancellation token fires during a store operation."""

    category = ErrorCategory.OPERATION_CANCELLED
