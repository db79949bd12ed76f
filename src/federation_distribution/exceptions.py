# src/federation_distribution/exceptions.py

"""
Shared custom exceptions for the Federation Distribution service.

Centralizing exception definitions in a separate module prevents circular
import errors between other modules that need to raise or catch them.

Exception Hierarchy:
- FederationDistributionError (base)
  - RetryableError (can be retried)
    - GatewayTransportError
    - AssemblyCancelledError
    - S3ThrottlingError
    - S3TimeoutError
    - PublishError
  - NonRetryableError (should not be retried)
    - StructureError
      - DuplicateNameError
      - ParentReassignedError
      - CyclicStructureError
    - ValidationError
      - InvalidWritableNameError
    - AssemblyFailedError
    - AssemblyIOError
    - GatewayNotFoundError
    - MalformedResponseError
      - MissingBatchTagError
    - GatewayRequestRejectedError
    - S3AccessDeniedError
    - ConfigurationError
"""

from enum import Enum
from typing import Any, Dict, Optional


class FederationDistributionError(Exception):
    """Base exception for all Federation Distribution service errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = dict(context) if context else {}  # Copy context to prevent mutation
        self.correlation_id = correlation_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "correlation_id": self.correlation_id,
            "retryable": isinstance(self, RetryableError),
        }


class RetryableError(FederationDistributionError):
    """Base class for errors that can be retried."""
    pass


class NonRetryableError(FederationDistributionError):
    """Base class for errors that should not be retried."""
    pass


# === Structural Errors (programmer errors, surfaced immediately) ===

class StructureError(NonRetryableError):
    """Base class for misuse of the writable tree."""
    pass


class DuplicateNameError(StructureError):
    """Raised when a directory already holds a child with the same name."""

    def __init__(self, directory: str, name: str, **kwargs):
        message = f"Directory '{directory}' already contains a writable named '{name}'"
        context = {"directory": directory, "name": name}
        super().__init__(message, error_code="DUPLICATE_NAME", context=context, **kwargs)


class ParentReassignedError(StructureError):
    """Raised when an attached writable is given a different parent."""

    def __init__(self, name: str, current_parent: str, new_parent: str, **kwargs):
        message = (
            f"Writable '{name}' is already attached to '{current_parent}' "
            f"and cannot be moved to '{new_parent}'"
        )
        context = {
            "name": name,
            "current_parent": current_parent,
            "new_parent": new_parent,
        }
        super().__init__(message, error_code="PARENT_REASSIGNED", context=context, **kwargs)


class CyclicStructureError(StructureError):
    """Raised when adding a writable would make it its own ancestor."""

    def __init__(self, directory: str, name: str, **kwargs):
        message = f"Adding '{name}' to '{directory}' would create a cycle"
        context = {"directory": directory, "name": name}
        super().__init__(message, error_code="CYCLIC_STRUCTURE", context=context, **kwargs)


# === Validation Errors ===

class ValidationError(NonRetryableError):
    """Base class for validation errors."""
    pass


class InvalidWritableNameError(ValidationError):
    """Raised when a writable name is not a single safe path segment."""

    def __init__(self, name: Any, reason: str, **kwargs):
        message = f"Invalid writable name {name!r}: {reason}"
        context = {"name": str(name), "reason": reason}
        if "error_code" not in kwargs:
            kwargs["error_code"] = "INVALID_WRITABLE_NAME"
        super().__init__(message, context=context, **kwargs)


# === Assembly Errors ===

class AssemblyFailedError(NonRetryableError):
    """
    Raised when a `prepare` step fails.

    `path` is relative to the directory that reported the failure; every
    enclosing directory prefixes its own segment while the error travels up.
    """

    def __init__(self, path: str, cause: BaseException, **kwargs):
        message = f"Assembly failed at '{path}': {cause}"
        context = {"path": path, "cause_type": type(cause).__name__}
        super().__init__(message, error_code="ASSEMBLY_FAILED", context=context, **kwargs)
        self.path = path
        self.cause = cause

    def prefixed(self, segment: str) -> "AssemblyFailedError":
        return AssemblyFailedError(
            f"{segment}/{self.path}", self.cause, correlation_id=self.correlation_id
        )


class AssemblyCancelledError(RetryableError):
    """Raised at a tree boundary once the run deadline has passed."""

    def __init__(self, path: str, **kwargs):
        message = f"Assembly cancelled before '{path}'"
        context = {"path": path}
        super().__init__(message, error_code="ASSEMBLY_CANCELLED", context=context, **kwargs)
        self.path = path


class AssemblyIOError(NonRetryableError):
    """Raised when the filesystem fails while staging or writing output."""

    def __init__(self, path: str, operation: str, **kwargs):
        message = f"I/O error during {operation}: {path}"
        context = {"path": path, "operation": operation}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="ASSEMBLY_IO_ERROR", context=context, **kwargs)
        self.path = path
        self.operation = operation


# === Federation Gateway Errors ===

class GatewayErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    TRANSPORT = "Transport"
    MALFORMED_RESPONSE = "MalformedResponse"
    MISSING_BATCH_TAG = "MissingBatchTag"
    REQUEST_REJECTED = "RequestRejected"


class FederationGatewayError(FederationDistributionError):
    """Base class for failures talking to the federation gateway."""

    kind: GatewayErrorKind

    def __init__(
        self,
        message: str,
        date: Optional[str] = None,
        batch_tag: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        context = {}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        context.update(
            {
                "kind": self.kind.value,
                "date": date,
                "batch_tag": batch_tag,
                "status_code": status_code,
            }
        )
        super().__init__(message, context=context, **kwargs)
        self.date = date
        self.batch_tag = batch_tag
        self.status_code = status_code


class GatewayNotFoundError(FederationGatewayError, NonRetryableError):
    """The gateway has no batch for the requested date or tag."""

    kind = GatewayErrorKind.NOT_FOUND

    def __init__(self, date: str, batch_tag: Optional[str] = None, **kwargs):
        target = f"batch {batch_tag} for date {date}" if batch_tag else f"date {date}"
        super().__init__(
            f"No batch found for {target}",
            date=date,
            batch_tag=batch_tag,
            status_code=404,
            error_code="GATEWAY_NOT_FOUND",
            **kwargs,
        )


class GatewayTransportError(FederationGatewayError, RetryableError):
    """Server error, timeout or connection failure."""

    kind = GatewayErrorKind.TRANSPORT

    def __init__(self, reason: str, **kwargs):
        kwargs.setdefault("error_code", "GATEWAY_TRANSPORT")
        super().__init__(f"Gateway transport failure: {reason}", **kwargs)


class MalformedResponseError(FederationGatewayError, NonRetryableError):
    """A 2xx response that cannot be interpreted."""

    kind = GatewayErrorKind.MALFORMED_RESPONSE

    def __init__(self, reason: str, **kwargs):
        kwargs.setdefault("error_code", "GATEWAY_MALFORMED_RESPONSE")
        super().__init__(f"Malformed gateway response: {reason}", **kwargs)


class MissingBatchTagError(MalformedResponseError):
    """A 2xx response without a usable batchTag header."""

    kind = GatewayErrorKind.MISSING_BATCH_TAG

    def __init__(self, header: str, **kwargs):
        kwargs.setdefault("error_code", "GATEWAY_MISSING_BATCH_TAG")
        super().__init__(f"Missing {header} header.", **kwargs)


class GatewayRequestRejectedError(FederationGatewayError, NonRetryableError):
    """A 4xx status other than 404."""

    kind = GatewayErrorKind.REQUEST_REJECTED

    def __init__(self, status_code: int, **kwargs):
        super().__init__(
            f"Gateway rejected the request with HTTP {status_code}",
            status_code=status_code,
            error_code="GATEWAY_REQUEST_REJECTED",
            **kwargs,
        )


# === S3 Publishing Errors ===

class S3Error(FederationDistributionError):
    """Base class for S3-related errors."""
    pass


class S3AccessDeniedError(S3Error, NonRetryableError):
    """Raised when access is denied to an S3 object."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"Access denied to S3 object: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="S3_ACCESS_DENIED", context=context, **kwargs)


class S3ThrottlingError(S3Error, RetryableError):
    """Raised when S3 operations are being throttled."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation throttled: {operation}"
        context = {"operation": operation}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="S3_THROTTLING", context=context, **kwargs)


class S3TimeoutError(S3Error, RetryableError):
    """Raised when S3 operations timeout."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation timed out: {operation}"
        context = {}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        context.update({"operation": operation})
        super().__init__(message, error_code="S3_TIMEOUT", context=context, **kwargs)


class PublishError(S3Error, RetryableError):
    """Raised when an artifact cannot be uploaded for any other reason."""

    def __init__(self, reason: str, **kwargs):
        message = f"Publishing failed: {reason}"
        context = {"reason": reason}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="PUBLISH_FAILED", context=context, **kwargs)


# === Configuration Errors ===

class ConfigurationError(NonRetryableError):
    """Raised when there's an error in the application configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)


# === Utility Functions ===

def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable."""
    return isinstance(error, RetryableError)


def get_error_context(error: Exception) -> Dict[str, Any]:
    """Extract error context for logging."""
    if isinstance(error, FederationDistributionError):
        return error.to_dict()
    else:
        return {
            "error_type": error.__class__.__name__,
            "message": str(error),
            "retryable": False,  # Unknown errors default to non-retryable
        }
