"""Error handling utilities for the claims desk."""

from dataclasses import dataclass
from typing import Optional, Dict, Any
from enum import Enum


class ErrorType(Enum):
    """Enumeration of error types in the claims desk."""

    # Validation Errors
    VALIDATION_FAILED = "VALIDATION_FAILED"

    # Persistence Errors
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    CONCURRENT_UPDATE = "CONCURRENT_UPDATE"

    # Read Errors
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"
    READ_FAILED = "READ_FAILED"

    # External Service Errors
    RENDER_SERVICE_FAILED = "RENDER_SERVICE_FAILED"
    IMAGE_UPLOAD_FAILED = "IMAGE_UPLOAD_FAILED"
    DOCUMENT_UPLOAD_FAILED = "DOCUMENT_UPLOAD_FAILED"

    # Access Errors
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Configuration Errors
    CONFIG_MISSING = "CONFIG_MISSING"
    CONFIG_INVALID = "CONFIG_INVALID"

    # General Errors
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass
class ErrorContext:
    """
    Context information for errors in the claims desk.

    Attributes:
        error_type: Type of error from ErrorType enum
        message: Human-readable error message
        recoverable: Whether the error can be recovered from by retrying the action
        fallback_action: Optional description of what the caller should do next
        details: Optional additional error details
        original_exception: Optional original exception that caused this error
    """

    error_type: ErrorType
    message: str
    recoverable: bool
    fallback_action: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    original_exception: Optional[Exception] = None

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error context to dictionary for logging/serialization.

        Returns:
            Dictionary representation of error context
        """
        return {
            "error_type": self.error_type.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "fallback_action": self.fallback_action,
            "details": self.details or {},
            "original_exception": str(self.original_exception) if self.original_exception else None
        }


class ClaimsDeskError(Exception):
    """
    Base exception for all claims desk errors.

    Wraps errors with additional context so callers can turn them into
    user-visible notifications instead of unhandled failures.

    Attributes:
        context: ErrorContext with detailed error information
    """

    def __init__(self, context: ErrorContext):
        """
        Initialize claims desk error.

        Args:
            context: ErrorContext with error details
        """
        self.context = context
        super().__init__(context.message)

    def __str__(self) -> str:
        """String representation of the error."""
        base = f"{self.context.error_type.value}: {self.context.message}"
        if self.context.fallback_action:
            base += f" (Fallback: {self.context.fallback_action})"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of error
        """
        return self.context.to_dict()


class ValidationError(ClaimsDeskError):
    """Exception for input rejected before any persistence call."""

    @classmethod
    def invalid(cls, message: str, field: Optional[str] = None) -> "ValidationError":
        """
        Create error for a rejected input.

        Args:
            message: Explanation shown to the user
            field: Optional name of the offending field

        Returns:
            ValidationError instance
        """
        context = ErrorContext(
            error_type=ErrorType.VALIDATION_FAILED,
            message=message,
            recoverable=True,
            fallback_action="Correct the input and retry",
            details={"field": field} if field else None
        )
        return cls(context)

    @classmethod
    def required(cls, field: str, label: Optional[str] = None) -> "ValidationError":
        """Create error for a missing required value."""
        return cls.invalid(f"{label or field} is required", field=field)


class PersistenceError(ClaimsDeskError):
    """Exception for writes rejected by the backing store."""

    @classmethod
    def write_failed(
        cls,
        operation: str,
        error: Exception,
        claim_id: Optional[str] = None
    ) -> "PersistenceError":
        """
        Create error for a failed write.

        Args:
            operation: Description of the write that failed
            error: Original exception
            claim_id: Optional claim the write targeted

        Returns:
            PersistenceError instance
        """
        context = ErrorContext(
            error_type=ErrorType.PERSISTENCE_FAILED,
            message=f"Failed to {operation}: {str(error)}",
            recoverable=True,
            fallback_action="Local changes kept; retry the save",
            details={"operation": operation, "claim_id": claim_id},
            original_exception=error
        )
        return cls(context)


class ConcurrencyConflict(PersistenceError):
    """Exception for an optimistic version check that lost a race."""

    @classmethod
    def stale_version(
        cls,
        claim_id: str,
        expected: int,
        actual: int
    ) -> "ConcurrencyConflict":
        """
        Create error for a stale version token.

        Args:
            claim_id: Claim whose document changed underneath the caller
            expected: Version the caller based its change on
            actual: Current stored version

        Returns:
            ConcurrencyConflict instance
        """
        context = ErrorContext(
            error_type=ErrorType.CONCURRENT_UPDATE,
            message=(
                f"Claim {claim_id} was modified by another save "
                f"(expected version {expected}, found {actual})"
            ),
            recoverable=True,
            fallback_action="Reload the claim and reapply the change",
            details={"claim_id": claim_id, "expected": expected, "actual": actual}
        )
        return cls(context)


class ReadError(ClaimsDeskError):
    """Exception for lookups that fail or find nothing."""

    @classmethod
    def not_found(cls, table: str, record_id: str) -> "ReadError":
        """
        Create error for a missing record.

        Args:
            table: Table that was queried
            record_id: Identifier that was looked up

        Returns:
            ReadError instance
        """
        context = ErrorContext(
            error_type=ErrorType.RECORD_NOT_FOUND,
            message=f"No {table} record with id '{record_id}'",
            recoverable=True,
            details={"table": table, "id": record_id}
        )
        return cls(context)

    @classmethod
    def load_failed(cls, what: str, error: Exception) -> "ReadError":
        """Create error for a read that raised."""
        context = ErrorContext(
            error_type=ErrorType.READ_FAILED,
            message=f"Failed to load {what}: {str(error)}",
            recoverable=True,
            fallback_action="Reload the page",
            original_exception=error
        )
        return cls(context)


class ExternalServiceError(ClaimsDeskError):
    """Exception for failures of the rendering and upload services."""

    @classmethod
    def from_response(
        cls,
        error_type: ErrorType,
        service: str,
        status_code: Optional[int],
        body: Optional[str],
        error: Optional[Exception] = None
    ) -> "ExternalServiceError":
        """
        Create error from an upstream HTTP failure.

        The upstream body is surfaced as the message when present, since
        that is what the user needs to see.

        Args:
            error_type: RENDER_SERVICE_FAILED, IMAGE_UPLOAD_FAILED or DOCUMENT_UPLOAD_FAILED
            service: Human-readable service name
            status_code: HTTP status, or None if the request never completed
            body: Response text, if any
            error: Optional transport exception

        Returns:
            ExternalServiceError instance
        """
        upstream = (body or "").strip() or (str(error) if error else "")
        message = f"{service} failed"
        if upstream:
            message += f": {upstream}"
        context = ErrorContext(
            error_type=error_type,
            message=message,
            recoverable=True,
            fallback_action="Retry the action",
            details={"service": service, "status_code": status_code},
            original_exception=error
        )
        return cls(context)


class PermissionDenied(ClaimsDeskError):
    """Exception for the admin/user role check."""

    @classmethod
    def admin_required(cls, user_id: Optional[str], action: str) -> "PermissionDenied":
        """Create error for a non-admin attempting an admin action."""
        context = ErrorContext(
            error_type=ErrorType.PERMISSION_DENIED,
            message=f"Only administrators can {action}",
            recoverable=False,
            details={"user_id": user_id, "action": action}
        )
        return cls(context)


class ConfigError(ClaimsDeskError):
    """Exception for missing or invalid configuration."""

    @classmethod
    def missing(cls, path: str) -> "ConfigError":
        """Create error for a configuration file that does not exist."""
        context = ErrorContext(
            error_type=ErrorType.CONFIG_MISSING,
            message=f"Configuration file not found: {path}",
            recoverable=False,
            fallback_action="Create config.yaml or point CLAIMDESK_CONFIG at one",
            details={"path": path}
        )
        return cls(context)

    @classmethod
    def invalid(cls, message: str) -> "ConfigError":
        """Create error for a configuration value that cannot be used."""
        context = ErrorContext(
            error_type=ErrorType.CONFIG_INVALID,
            message=message,
            recoverable=False
        )
        return cls(context)


def handle_persistence_error(
    error: Exception,
    operation: str,
    logger,
    claim_id: Optional[str] = None
) -> None:
    """
    Log a failed write and re-raise it as a PersistenceError.

    Args:
        error: Original exception from the store
        operation: Description of the write that failed
        logger: Logger instance for error logging
        claim_id: Optional claim the write targeted

    Raises:
        PersistenceError: Wrapped error with context
    """
    if isinstance(error, PersistenceError):
        persistence_error = error
    else:
        persistence_error = PersistenceError.write_failed(
            operation=operation,
            error=error,
            claim_id=claim_id
        )

    logger.warning(f"Recoverable persistence error: {persistence_error}")
    raise persistence_error
