"""Exception types raised by the insight engine."""

from typing import Optional


class EngineError(Exception):
    """Base class for engine errors."""


class ValidationError(EngineError, ValueError):
    """Input failed shape or business validation."""


class PermissionDenied(EngineError):
    """Caller is not allowed to perform the operation."""

    def __init__(self, message: str = "Permission denied", resource: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.resource = resource
        self.operation = operation


class RateLimited(EngineError):
    """Caller exceeded the request budget for the current window."""

    def __init__(self, retry_after_seconds: int, remaining: int = 0):
        super().__init__(f"Rate limit exceeded, retry after {retry_after_seconds}s")
        self.retry_after_seconds = retry_after_seconds
        self.remaining = remaining


class NotFound(EngineError, LookupError):
    """Referenced record does not exist."""


class InvalidTransition(EngineError):
    """State machine transition is not allowed from the current state."""


class ExecutionFailed(EngineError):
    """Executing an approved action failed."""


class StorageError(EngineError):
    """Persistence layer failure."""
