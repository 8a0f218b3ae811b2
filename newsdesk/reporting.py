"""Console output for task outcomes."""
from __future__ import annotations

import json
import sys
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Sequence, TextIO

if TYPE_CHECKING:  # pragma: no cover
    from .tasks import TaskOutcome


class Reporter(Protocol):
    """Receives the outcome of a task once its operation has finished."""

    def success(self, outcome: "TaskOutcome") -> None: ...

    def failure(self, outcome: "TaskOutcome") -> None: ...


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _to_json(payload: Any) -> str:
    if isinstance(payload, list):
        data: Any = [{key: _jsonable(value) for key, value in item.items()} for item in payload]
    else:
        data = {key: _jsonable(value) for key, value in payload.items()}
    return json.dumps(data, sort_keys=False)


def _format_cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S %Z").strip()
    return str(value)


def render_table(records: Sequence[Dict[str, Any]], fields: Sequence[str]) -> List[str]:
    """Render ``records`` as aligned text rows with a header line."""

    rows = [[_format_cell(record.get(name)) for name in fields] for record in records]
    widths = [len(name) for name in fields]
    for row in rows:
        widths = [max(width, len(cell)) for width, cell in zip(widths, row)]

    header = "  ".join(name.ljust(width) for name, width in zip(fields, widths)).rstrip()
    lines = [header, "-" * len(header)]
    for row in rows:
        lines.append("  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())
    return lines


class ConsoleReporter:
    """Write one-line summaries to stdout and errors to stderr."""

    def __init__(
        self,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
        *,
        as_json: bool = False,
    ) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self._as_json = as_json

    @property
    def stdout(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def stderr(self) -> TextIO:
        return self._stderr if self._stderr is not None else sys.stderr

    def success(self, outcome: "TaskOutcome") -> None:
        payload = outcome.payload
        if isinstance(payload, list):
            self._report_records(outcome, payload)
            return
        print(f"{outcome.operation} succeeded: {_to_json(payload)}", file=self.stdout)

    def _report_records(self, outcome: "TaskOutcome", records: List[Dict[str, Any]]) -> None:
        if self._as_json:
            print(_to_json(records), file=self.stdout)
            return

        if not records:
            print("No users found.", file=self.stdout)
            return

        fields = getattr(outcome.task, "fields", None) or list(records[0])
        print(f"{len(records)} user(s) found:", file=self.stdout)
        for line in render_table(records, fields):
            print(line, file=self.stdout)

    def failure(self, outcome: "TaskOutcome") -> None:
        error = outcome.error
        if error is None:  # pragma: no cover - runner only reports failures with an error
            return
        print(f"{outcome.operation} failed [{error.kind.value}]: {error.message}", file=self.stderr)
        if error.cause is not None:
            print(f"  cause: {type(error.cause).__name__}: {error.cause}", file=self.stderr)


__all__ = ["ConsoleReporter", "Reporter", "render_table"]
