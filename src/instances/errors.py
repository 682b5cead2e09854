"""Exception taxonomy for instance engine failures."""

from __future__ import annotations

from typing import Any


class InstanceServiceError(Exception):
    """Base exception for instance engine failures."""

    def __init__(self, code: str, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize the error with a machine-readable code and details."""
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


class InstanceValidationError(InstanceServiceError):
    """Raised when engine inputs fail validation."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a validation error with optional details."""
        super().__init__("validation_error", message, details)


class InstanceNotFoundError(InstanceServiceError):
    """Raised when a daily instance does not exist."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a not-found error with optional details."""
        super().__init__("not_found", message, details)


class ScheduleNotFoundError(InstanceServiceError):
    """Raised when a schedule or the item it references is missing."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a not-found error with optional details."""
        super().__init__("not_found", message, details)


class ItemNotFoundError(InstanceServiceError):
    """Raised when an item does not exist."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a not-found error with optional details."""
        super().__init__("not_found", message, details)


class HistoryNotFoundError(InstanceServiceError):
    """Raised when a confirmation history entry does not exist."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a not-found error with optional details."""
        super().__init__("not_found", message, details)


class InstanceExpiredError(InstanceServiceError):
    """Raised when acting on an instance whose day has elapsed."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize an expired-instance error with optional details."""
        super().__init__("instance_expired", message, details)


class AlreadyConfirmedError(InstanceServiceError):
    """Raised when a non-confirm action targets a confirmed instance.

    ``history`` holds the existing confirmation so callers can report it as
    the idempotent result.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, object] | None = None,
        *,
        history: Any = None,
    ) -> None:
        """Initialize the error with the existing confirmation record."""
        super().__init__("already_confirmed", message, details)
        self.history = history


__all__ = [
    "AlreadyConfirmedError",
    "HistoryNotFoundError",
    "InstanceExpiredError",
    "InstanceNotFoundError",
    "InstanceServiceError",
    "InstanceValidationError",
    "ItemNotFoundError",
    "ScheduleNotFoundError",
]
