"""Exception hierarchy for the orchestration core."""

from __future__ import annotations


class CrewCoreError(Exception):
    """Base class for all core errors."""


class ValidationError(CrewCoreError):
    """A request is missing fields or carries invalid values."""


class NotFoundError(CrewCoreError):
    """No record exists for the given id."""


class AuthorizationError(CrewCoreError):
    """The record exists but is owned by another user."""


class InvalidStateError(CrewCoreError):
    """A transition was attempted from a disallowed state."""

    def __init__(self, message: str, *, current_state: str | None = None) -> None:
        super().__init__(message)
        self.current_state = current_state


class PersistenceError(CrewCoreError):
    """The backing store failed or did not answer in time."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable
