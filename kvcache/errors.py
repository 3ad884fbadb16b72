"""
kvcache — Core Error Types

Defines the exception hierarchy for the cache facade.
All exceptions inherit from KVCacheError for consistent error handling.

Construction-time errors (ConfigError, BackendUnavailableError) are fatal and
propagate to the caller. OperationFailure is raised inside backends and is
always converted into a failure result by the facade.
"""

from enum import Enum
from typing import Any


class ResultCode(str, Enum):
    """
    Outcome of the most recent facade operation.

    Lets callers tell a cache miss apart from a backend error.
    """

    SUCCESS = "SUCCESS"
    NOT_FOUND = "NOT_FOUND"
    FAILURE = "FAILURE"
    DISABLED = "DISABLED"


class KVCacheError(Exception):
    """Base exception for all kvcache errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(KVCacheError):
    """Raised when a server list or backend options are malformed."""

    pass


class BackendUnavailableError(KVCacheError):
    """Raised when a requested backend's runtime capability is missing."""

    def __init__(self, backend: str, details: dict[str, Any] | None = None):
        message = f"Cache backend not available: {backend}"
        error_details = details or {}
        error_details.setdefault("backend", backend)
        super().__init__(message, error_details)
        self.backend = backend


class OperationFailure(KVCacheError):
    """Raised by a backend when a single cache operation did not succeed."""

    def __init__(
        self,
        operation: str,
        key: str | None = None,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        message = f"Cache operation '{operation}' failed"
        if key is not None:
            message += f" for key '{key}'"
        if reason:
            message += f": {reason}"

        error_details = details or {}
        error_details.update({"operation": operation, "key": key})
        super().__init__(message, error_details)
        self.operation = operation
        self.key = key
