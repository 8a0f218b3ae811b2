"""One-shot administrative tasks against the user store.

Every task follows the same lifecycle: a store handle is acquired, exactly one
operation runs against it, the outcome is reported and the handle is released
no matter how the operation ended. Nothing is retried.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    ClassVar,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

import anyio

from .errors import StoreConnectionError, TaskError, UnknownTaskError
from .models import MUTABLE_FIELDS, USER_FIELDS
from .reporting import ConsoleReporter, Reporter
from .store import UserStore

logger = logging.getLogger("newsdesk.tasks")

StoreFactory = Callable[[], Awaitable[UserStore]]

DEFAULT_DISPLAY_FIELDS: Tuple[str, ...] = ("id", "email", "name", "role")
DEFAULT_LIST_FIELDS: Tuple[str, ...] = ("email", "name", "role")


class TaskState(str, Enum):
    NOT_STARTED = "not_started"
    HANDLE_ACQUIRED = "handle_acquired"
    OPERATION_SUCCEEDED = "operation_succeeded"
    OPERATION_FAILED = "operation_failed"
    HANDLE_RELEASED = "handle_released"
    DONE = "done"


def _validate_fields(fields: Iterable[str], *, label: str) -> Tuple[str, ...]:
    selected = tuple(fields)
    if not selected:
        raise ValueError(f"At least one {label} field is required")
    unknown = [name for name in selected if name not in USER_FIELDS]
    if unknown:
        raise ValueError(f"Unknown {label} field(s): {', '.join(unknown)}")
    if len(set(selected)) != len(selected):
        raise ValueError(f"Duplicate {label} fields: {', '.join(selected)}")
    return selected


def _normalize_selector(email: str) -> str:
    normalized = email.strip().lower()
    if not normalized:
        raise ValueError("An email selector is required")
    return normalized


@dataclass(frozen=True)
class UpdateUserTask:
    """Apply field updates to the one user identified by ``email``.

    Role values are passed through unvalidated so that the store's own
    constraint decides what is acceptable.
    """

    email: str
    changes: Mapping[str, object]
    display_fields: Tuple[str, ...] = DEFAULT_DISPLAY_FIELDS

    operation: ClassVar[str] = "update-user"

    def __post_init__(self) -> None:
        object.__setattr__(self, "email", _normalize_selector(self.email))
        changes = dict(self.changes)
        if not changes:
            raise ValueError("At least one field must be updated")
        unknown = [name for name in changes if name not in MUTABLE_FIELDS]
        if unknown:
            raise ValueError(f"Field(s) cannot be updated: {', '.join(unknown)}")
        role = changes.get("role")
        if isinstance(role, Enum):
            changes["role"] = role.value
        elif isinstance(role, str):
            changes["role"] = role.strip().upper()
        object.__setattr__(self, "changes", changes)
        object.__setattr__(
            self,
            "display_fields",
            _validate_fields(self.display_fields, label="display"),
        )

    async def execute(self, store: UserStore) -> Dict[str, Any]:
        user = await store.update_one(self.email, self.changes)
        return {name: getattr(user, name) for name in self.display_fields}


@dataclass(frozen=True)
class LookupUserTask:
    """Read selected fields of the one user identified by ``email``."""

    email: str
    fields: Tuple[str, ...] = DEFAULT_DISPLAY_FIELDS

    operation: ClassVar[str] = "show-user"

    def __post_init__(self) -> None:
        object.__setattr__(self, "email", _normalize_selector(self.email))
        object.__setattr__(self, "fields", _validate_fields(self.fields, label="projection"))

    async def execute(self, store: UserStore) -> Dict[str, Any]:
        return await store.find_one(self.email, self.fields)


@dataclass(frozen=True)
class ListUsersTask:
    """Read selected fields of every user; an empty store is not an error."""

    fields: Tuple[str, ...] = DEFAULT_LIST_FIELDS

    operation: ClassVar[str] = "list-users"

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", _validate_fields(self.fields, label="projection"))

    async def execute(self, store: UserStore) -> List[Dict[str, Any]]:
        return await store.find_many(self.fields)


Task = Union[UpdateUserTask, LookupUserTask, ListUsersTask]


@dataclass
class TaskOutcome:
    """What happened while running a single task."""

    operation: str
    task: Any = None
    states: List[TaskState] = field(default_factory=lambda: [TaskState.NOT_STARTED])
    payload: Any = None
    error: Optional[TaskError] = None

    @property
    def state(self) -> TaskState:
        return self.states[-1]

    @property
    def succeeded(self) -> bool:
        return self.error is None and TaskState.OPERATION_SUCCEEDED in self.states

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def advance(self, state: TaskState) -> None:
        self.states.append(state)


class TaskRunner:
    """Run tasks against handles produced by ``acquire``.

    ``acquire`` is called once per task and the handle it returns is closed
    before :meth:`run` returns, including when the operation or the reporter
    raises.
    """

    def __init__(self, acquire: StoreFactory, reporter: Optional[Reporter] = None) -> None:
        self._acquire = acquire
        self._reporter = reporter if reporter is not None else ConsoleReporter()

    async def run(self, task: Task) -> TaskOutcome:
        outcome = TaskOutcome(operation=task.operation, task=task)

        try:
            store = await self._acquire()
        except TaskError as exc:
            outcome.error = exc.for_operation(task.operation)
        except Exception as exc:
            error = StoreConnectionError(
                f"Could not acquire a store handle: {exc}",
                operation=task.operation,
                cause=exc,
            )
            error.__cause__ = exc
            outcome.error = error

        if outcome.error is not None:
            logger.debug("%s: store handle unavailable: %s", task.operation, outcome.error)
            outcome.advance(TaskState.OPERATION_FAILED)
            self._reporter.failure(outcome)
            outcome.advance(TaskState.DONE)
            return outcome

        outcome.advance(TaskState.HANDLE_ACQUIRED)
        try:
            try:
                outcome.payload = await task.execute(store)
            except TaskError as exc:
                outcome.error = exc.for_operation(task.operation)
            except Exception as exc:
                error = UnknownTaskError(
                    f"{type(exc).__name__}: {exc}",
                    operation=task.operation,
                    cause=exc,
                )
                error.__cause__ = exc
                outcome.error = error
                logger.exception("%s failed unexpectedly", task.operation)

            if outcome.error is None:
                outcome.advance(TaskState.OPERATION_SUCCEEDED)
                self._reporter.success(outcome)
            else:
                logger.debug(
                    "%s failed [%s]: %s",
                    task.operation,
                    outcome.error.kind.value,
                    outcome.error,
                )
                outcome.advance(TaskState.OPERATION_FAILED)
                self._reporter.failure(outcome)
        finally:
            await store.close()
            outcome.advance(TaskState.HANDLE_RELEASED)

        outcome.advance(TaskState.DONE)
        return outcome

    async def run_all(self, tasks: Iterable[Task]) -> List[TaskOutcome]:
        """Run ``tasks`` one after another, each with its own handle."""

        return [await self.run(task) for task in tasks]


def run_task(
    task: Task,
    *,
    acquire: StoreFactory,
    reporter: Optional[Reporter] = None,
) -> TaskOutcome:
    """Synchronously run a single task to completion."""

    runner = TaskRunner(acquire, reporter)
    return anyio.run(runner.run, task)


def run_tasks(
    tasks: Iterable[Task],
    *,
    acquire: StoreFactory,
    reporter: Optional[Reporter] = None,
) -> List[TaskOutcome]:
    runner = TaskRunner(acquire, reporter)
    return anyio.run(runner.run_all, list(tasks))


__all__ = [
    "DEFAULT_DISPLAY_FIELDS",
    "DEFAULT_LIST_FIELDS",
    "ListUsersTask",
    "LookupUserTask",
    "StoreFactory",
    "Task",
    "TaskOutcome",
    "TaskRunner",
    "TaskState",
    "UpdateUserTask",
    "run_task",
    "run_tasks",
]
