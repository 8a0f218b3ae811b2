"""Administrative tooling for the newsletter user store."""

from __future__ import annotations

from .database import Database, resolve_database_path
from .errors import (
    ConstraintViolationError,
    ErrorKind,
    RecordNotFoundError,
    StoreConnectionError,
    TaskError,
    UnknownTaskError,
)
from .models import User, UserRole
from .tasks import (
    ListUsersTask,
    LookupUserTask,
    TaskOutcome,
    TaskRunner,
    TaskState,
    UpdateUserTask,
    run_task,
)

__all__ = [
    "ConstraintViolationError",
    "Database",
    "ErrorKind",
    "ListUsersTask",
    "LookupUserTask",
    "RecordNotFoundError",
    "StoreConnectionError",
    "TaskError",
    "TaskOutcome",
    "TaskRunner",
    "TaskState",
    "UnknownTaskError",
    "UpdateUserTask",
    "User",
    "UserRole",
    "resolve_database_path",
    "run_task",
]
