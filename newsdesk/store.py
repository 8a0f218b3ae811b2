"""Async connection handle over the SQLite user store."""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import anyio

from .errors import (
    ConstraintViolationError,
    RecordNotFoundError,
    StoreConnectionError,
)
from .models import MUTABLE_FIELDS, USER_FIELDS, User

logger = logging.getLogger("newsdesk.store")

_BOOLEAN_FIELDS = {"is_active", "is_verified"}
_TIMESTAMP_FIELDS = {"created_at", "updated_at"}


def current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _check_fields(fields: Sequence[str], allowed: Sequence[str]) -> List[str]:
    requested = list(fields)
    if not requested:
        raise ValueError("At least one field must be requested")
    unknown = [name for name in requested if name not in allowed]
    if unknown:
        raise ValueError(f"Unknown user field(s): {', '.join(unknown)}")
    if len(set(requested)) != len(requested):
        raise ValueError("Duplicate user fields requested")
    return requested


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=int(row["id"]),
        name=str(row["name"]),
        email=str(row["email"]),
        role=str(row["role"]),
        is_active=bool(row["is_active"]),
        is_verified=bool(row["is_verified"]),
        created_at=parse_datetime(str(row["created_at"])),
        updated_at=parse_datetime(str(row["updated_at"])),
    )


def _project(row: sqlite3.Row, fields: Sequence[str]) -> Dict[str, Any]:
    record: Dict[str, Any] = {}
    for name in fields:
        value = row[name]
        if name in _BOOLEAN_FIELDS:
            value = bool(value)
        elif name in _TIMESTAMP_FIELDS:
            value = parse_datetime(str(value))
        record[name] = value
    return record


class UserStore:
    """A single open connection to the user database.

    Every query is pushed to a worker thread so callers suspend while the
    round-trip is outstanding. The handle is owned by one task at a time and
    must be closed exactly once via :meth:`close`.
    """

    def __init__(self, conn: sqlite3.Connection, *, path: Optional[str] = None) -> None:
        self._conn: Optional[sqlite3.Connection] = conn
        self._path = path

    @property
    def closed(self) -> bool:
        return self._conn is None

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreConnectionError("The store connection has already been released")
        return self._conn

    async def _run(self, func, *args):
        return await anyio.to_thread.run_sync(func, *args)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def update_one(self, email: str, changes: Mapping[str, object]) -> User:
        """Apply ``changes`` to the single record identified by ``email``."""

        columns = _check_fields(list(changes), MUTABLE_FIELDS)
        conn = self._require_conn()
        return await self._run(self._update_one_sync, conn, _normalize_email(email), columns, dict(changes))

    def _update_one_sync(
        self,
        conn: sqlite3.Connection,
        email: str,
        columns: List[str],
        changes: Dict[str, object],
    ) -> User:
        values: List[object] = []
        for column in columns:
            value = changes[column]
            if column in _BOOLEAN_FIELDS:
                value = int(bool(value))
            values.append(value)
        assignments = [f"{column} = ?" for column in columns]
        assignments.append("updated_at = ?")
        values.append(serialize_datetime(current_timestamp()))
        values.append(email)
        query = f"UPDATE users SET {', '.join(assignments)} WHERE email = ?"

        try:
            with conn:
                cursor = conn.execute(query, values)
                matched = cursor.rowcount
                if matched == 0:
                    raise RecordNotFoundError(f"No user with email {email!r}")
                if matched > 1:
                    # Raising inside the ``with`` block rolls the update back.
                    raise ConstraintViolationError(
                        f"Selector {email!r} matched {matched} users; refusing to update more than one"
                    )
        except sqlite3.IntegrityError as exc:
            raise ConstraintViolationError(
                f"The store rejected the update for {email!r}: {exc}", cause=exc
            ) from exc

        row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        if row is None:  # pragma: no cover - row vanished between commit and read
            raise RecordNotFoundError(f"No user with email {email!r}")
        logger.info("Updated %s for user %s", ", ".join(columns), row["id"])
        return row_to_user(row)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def find_one(self, email: str, fields: Sequence[str]) -> Dict[str, Any]:
        """Return the requested fields of the record identified by ``email``."""

        columns = _check_fields(fields, USER_FIELDS)
        conn = self._require_conn()
        normalized = _normalize_email(email)
        rows = await self._run(self._select_sync, conn, columns, normalized)
        if not rows:
            raise RecordNotFoundError(f"No user with email {normalized!r}")
        if len(rows) > 1:
            raise ConstraintViolationError(f"Selector {normalized!r} matched {len(rows)} users")
        return _project(rows[0], columns)

    async def find_many(self, fields: Sequence[str]) -> List[Dict[str, Any]]:
        """Return the requested fields of every user record, ordered by id."""

        columns = _check_fields(fields, USER_FIELDS)
        conn = self._require_conn()
        rows = await self._run(self._select_sync, conn, columns, None)
        return [_project(row, columns) for row in rows]

    def _select_sync(
        self,
        conn: sqlite3.Connection,
        columns: List[str],
        email: Optional[str],
    ) -> List[sqlite3.Row]:
        query = f"SELECT {', '.join(columns)} FROM users"
        params: tuple = ()
        if email is not None:
            query += " WHERE email = ?"
            params = (email,)
        query += " ORDER BY id"
        return conn.execute(query, params).fetchall()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def close(self) -> None:
        conn = self._conn
        if conn is None:
            return
        self._conn = None
        await self._run(conn.close)
        logger.debug("Released store connection to %s", self._path)


async def open_user_store(path: str) -> UserStore:
    """Open a handle to an existing user database at ``path``."""

    def _connect() -> sqlite3.Connection:
        uri = Path(path).expanduser().resolve(strict=False).as_uri() + "?mode=rw"
        conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    try:
        conn = await anyio.to_thread.run_sync(_connect)
    except sqlite3.Error as exc:
        raise StoreConnectionError(f"Could not open user database at {path}: {exc}", cause=exc) from exc
    logger.debug("Acquired store connection to %s", path)
    return UserStore(conn, path=path)


__all__ = [
    "UserStore",
    "current_timestamp",
    "open_user_store",
    "parse_datetime",
    "row_to_user",
    "serialize_datetime",
]
