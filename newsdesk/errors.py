"""Error kinds reported by administrative store tasks."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    CONNECTION = "connection"
    NOT_FOUND = "not_found"
    CONSTRAINT = "constraint"
    UNKNOWN = "unknown"


class TaskError(RuntimeError):
    """Base class for failures surfaced by a store task.

    ``operation`` names what was being attempted (``update-user``,
    ``list-users``...) and ``cause`` holds the underlying exception, if any.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.cause = cause

    def for_operation(self, operation: str) -> "TaskError":
        """Attach the operation name if the raiser did not know it."""

        if self.operation is None:
            self.operation = operation
        return self


class StoreConnectionError(TaskError):
    """Raised when a handle to the user store cannot be acquired or was already released."""

    kind = ErrorKind.CONNECTION


class RecordNotFoundError(TaskError):
    """Raised when a selector matches no user record."""

    kind = ErrorKind.NOT_FOUND


class ConstraintViolationError(TaskError):
    """Raised when the store rejects a write or a selector is not unique."""

    kind = ErrorKind.CONSTRAINT


class UnknownTaskError(TaskError):
    """Wraps any other failure raised while a task was running."""

    kind = ErrorKind.UNKNOWN


__all__ = [
    "ConstraintViolationError",
    "ErrorKind",
    "RecordNotFoundError",
    "StoreConnectionError",
    "TaskError",
    "UnknownTaskError",
]
