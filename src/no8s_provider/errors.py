"""
Provider errors - The error taxonomy shared by every resource type.

Remote failures are classified into a small set of exception classes so the
accessor knows what to retry and the lifecycle controller knows what to
surface to the caller.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ProviderError(Exception):
    """Base class for all provider errors."""

    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationErrorKind(Enum):
    """Why a desired configuration was rejected."""

    TYPE = "type"
    REQUIRED = "required"
    UNKNOWN_ATTRIBUTE = "unknown_attribute"
    COMPUTED_ATTRIBUTE = "computed_attribute"
    MUTUALLY_EXCLUSIVE = "mutually_exclusive"
    AT_LEAST_ONE_OF = "at_least_one_of"
    EXACTLY_ONE_OF = "exactly_one_of"
    REQUIRED_WITH = "required_with"
    INVALID_VALUE = "invalid_value"


class ValidationError(ProviderError):
    """Raised when a desired configuration does not satisfy its schema."""

    def __init__(
        self,
        message: str,
        kind: ValidationErrorKind = ValidationErrorKind.INVALID_VALUE,
        path: str = "",
    ):
        self.kind = kind
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class NotFoundError(ProviderError):
    """The remote object does not exist."""


class RetryableError(ProviderError):
    """Throttling or transport failure; safe to retry."""

    retryable = True


class ConflictError(ProviderError):
    """Conflict or failed precondition that needs manual resolution."""


class ProvisioningFailedError(ProviderError):
    """The remote object reached a terminal failed status."""


class RetryExhaustedError(ProviderError):
    """Retryable errors kept happening until max_attempts ran out."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        self.last_error = last_error
        super().__init__(message)


class ResourceTimeoutError(ProviderError):
    """
    A polling deadline elapsed.

    Remote side effects already committed are not rolled back, so the error
    carries whatever the controller knew when it gave up.
    """

    def __init__(
        self,
        message: str,
        identifier: Optional[str] = None,
        last_observed: Optional[Dict[str, Any]] = None,
    ):
        self.identifier = identifier
        self.last_observed = last_observed
        super().__init__(message)


class LifecycleError(ProviderError):
    """A remote step failed; annotated with where the resource was."""

    def __init__(
        self,
        resource_type: str,
        identifier: Optional[str],
        state: str,
        cause: BaseException,
    ):
        self.resource_type = resource_type
        self.identifier = identifier
        self.state = state
        self.cause = cause
        self.retryable = getattr(cause, "retryable", False)
        target = identifier or "(new)"
        super().__init__(f"{resource_type} {target} failed while {state}: {cause}")
