from __future__ import annotations

import sqlite3
from pathlib import Path

import anyio
import pytest

from newsdesk.database import Database
from newsdesk.errors import ConstraintViolationError, RecordNotFoundError, StoreConnectionError
from newsdesk.models import UserRole
from newsdesk.store import open_user_store


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "newsdesk.sqlite3")
    db.initialize()
    return db


def _with_store(database: Database, operation):
    async def runner():
        store = await database.acquire()
        try:
            return await operation(store)
        finally:
            await store.close()

    return anyio.run(runner)


def test_update_one_applies_changes_and_refreshes_timestamp(database: Database) -> None:
    created = database.create_user("IT Editor", "it.editor@example.test", "changeme-please")

    updated = _with_store(
        database,
        lambda store: store.update_one("IT.Editor@example.test", {"role": "EDITOR", "is_verified": True}),
    )

    assert updated.id == created.id
    assert updated.role == "EDITOR"
    assert updated.is_verified is True
    assert updated.updated_at >= created.updated_at
    assert database.get_user_by_email("it.editor@example.test").role == "EDITOR"


def test_update_one_twice_with_same_values_succeeds(database: Database) -> None:
    database.create_user("IT Editor", "it.editor@example.test", "changeme-please")

    first = _with_store(database, lambda store: store.update_one("it.editor@example.test", {"role": "EDITOR"}))
    second = _with_store(database, lambda store: store.update_one("it.editor@example.test", {"role": "EDITOR"}))

    assert (first.id, first.email, first.role) == (second.id, second.email, second.role)


def test_update_one_missing_record_raises_not_found(database: Database) -> None:
    with pytest.raises(RecordNotFoundError):
        _with_store(database, lambda store: store.update_one("missing@example.test", {"role": "EDITOR"}))


def test_update_one_rejected_role_is_a_constraint_violation(database: Database) -> None:
    database.create_user("Reader", "reader@example.test", "changeme-please")

    with pytest.raises(ConstraintViolationError) as excinfo:
        _with_store(database, lambda store: store.update_one("reader@example.test", {"role": "WRITER"}))

    assert isinstance(excinfo.value.cause, sqlite3.IntegrityError)
    assert database.get_user_by_email("reader@example.test").role == UserRole.CUSTOMER.value


def test_update_one_refuses_to_touch_duplicate_rows(tmp_path: Path) -> None:
    path = tmp_path / "legacy.sqlite3"
    conn = sqlite3.connect(path)
    conn.execute(
        """
        CREATE TABLE users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            role TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            is_verified INTEGER NOT NULL DEFAULT 0,
            password_hash TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    for name in ("First", "Second"):
        conn.execute(
            "INSERT INTO users (name, email, role, created_at, updated_at) VALUES (?, ?, 'CUSTOMER', ?, ?)",
            (name, "dup@example.test", "2024-01-01T00:00:00+00:00", "2024-01-01T00:00:00+00:00"),
        )
    conn.commit()
    conn.close()

    database = Database(path)
    with pytest.raises(ConstraintViolationError):
        _with_store(database, lambda store: store.update_one("dup@example.test", {"role": "EDITOR"}))

    rows = sqlite3.connect(path).execute("SELECT role FROM users").fetchall()
    assert rows == [("CUSTOMER",), ("CUSTOMER",)]


def test_find_many_on_empty_store(database: Database) -> None:
    assert _with_store(database, lambda store: store.find_many(["email", "role"])) == []


def test_find_many_projects_requested_fields_only(database: Database) -> None:
    database.create_user("Alice", "alice@example.test", "changeme-please")
    database.create_user("Bob", "bob@example.test", "changeme-please", role=UserRole.PUBLISHER)

    records = _with_store(database, lambda store: store.find_many(["email", "name", "role", "is_active"]))

    assert records == [
        {"email": "alice@example.test", "name": "Alice", "role": "CUSTOMER", "is_active": True},
        {"email": "bob@example.test", "name": "Bob", "role": "PUBLISHER", "is_active": True},
    ]


def test_find_one_returns_projection_or_not_found(database: Database) -> None:
    database.create_user("Alice", "alice@example.test", "changeme-please")

    record = _with_store(database, lambda store: store.find_one("alice@example.test", ["name", "created_at"]))
    assert set(record) == {"name", "created_at"}
    assert record["name"] == "Alice"

    with pytest.raises(RecordNotFoundError):
        _with_store(database, lambda store: store.find_one("bob@example.test", ["name"]))


def test_unknown_fields_are_rejected_before_querying(database: Database) -> None:
    with pytest.raises(ValueError):
        _with_store(database, lambda store: store.find_many(["password_hash"]))
    with pytest.raises(ValueError):
        _with_store(database, lambda store: store.update_one("a@example.test", {"email": "b@example.test"}))


def test_closed_store_refuses_queries(database: Database) -> None:
    async def scenario():
        store = await database.acquire()
        await store.close()
        await store.close()
        assert store.closed
        await store.find_many(["email"])

    with pytest.raises(StoreConnectionError):
        anyio.run(scenario)


def test_opening_missing_database_is_a_connection_error(tmp_path: Path) -> None:
    missing = tmp_path / "nope" / "missing.sqlite3"

    with pytest.raises(StoreConnectionError) as excinfo:
        anyio.run(open_user_store, str(missing))

    assert isinstance(excinfo.value.cause, sqlite3.Error)
    assert not missing.exists()


def test_migrated_database_rejects_unknown_roles(tmp_path: Path) -> None:
    path = tmp_path / "old.sqlite3"
    conn = sqlite3.connect(path)
    conn.execute(
        """
        CREATE TABLE users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT NOT NULL UNIQUE,
            role TEXT NOT NULL DEFAULT 'CUSTOMER',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "INSERT INTO users (name, email, role, created_at, updated_at) VALUES (?, ?, 'CUSTOMER', ?, ?)",
        ("Reader", "reader@example.test", "2024-01-01T00:00:00+00:00", "2024-01-01T00:00:00+00:00"),
    )
    conn.commit()
    conn.close()

    database = Database(path)
    database.initialize()

    with pytest.raises(ConstraintViolationError) as excinfo:
        _with_store(database, lambda store: store.update_one("reader@example.test", {"role": "WRITER"}))

    assert isinstance(excinfo.value.cause, sqlite3.IntegrityError)
    assert database.get_user_by_email("reader@example.test").role == "CUSTOMER"

    updated = _with_store(database, lambda store: store.update_one("reader@example.test", {"role": "EDITOR"}))
    assert updated.role == "EDITOR"
    conn = sqlite3.connect(path)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO users (name, email, role, created_at, updated_at) VALUES (?, ?, 'WRITER', ?, ?)",
            ("Writer", "writer@example.test", "2024-01-01T00:00:00+00:00", "2024-01-01T00:00:00+00:00"),
        )
    conn.close()
