"""SQLite-backed persistence for newsletter user accounts."""
from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from passlib.context import CryptContext

from .models import User, UserRole
from .store import (
    UserStore,
    current_timestamp,
    serialize_datetime,
    open_user_store,
    row_to_user,
)

DB_PATH_ENV = "NEWSDESK_DB_PATH"

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

_ROLE_VALUES = ", ".join(f"'{role.value}'" for role in UserRole)


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str] = None) -> Path:
    """Resolve the on-disk path for the user database."""

    value = env_value or os.getenv(DB_PATH_ENV)
    if value:
        return Path(value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "newsdesk.sqlite3").resolve(strict=False)


def _hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


class Database:
    """Simple wrapper around SQLite for provisioning and inspecting users."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        _ensure_directory(self._path)
        with self._connection() as conn:
            conn.executescript(
                f"""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    role TEXT NOT NULL DEFAULT 'CUSTOMER' CHECK (role IN ({_ROLE_VALUES})),
                    is_active INTEGER NOT NULL DEFAULT 1,
                    is_verified INTEGER NOT NULL DEFAULT 0,
                    password_hash TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_users_role ON users(role);
                """
            )

            columns = {
                row["name"]
                for row in conn.execute("PRAGMA table_info(users)").fetchall()
            }
            if "is_active" not in columns:
                conn.execute("ALTER TABLE users ADD COLUMN is_active INTEGER NOT NULL DEFAULT 1")
            if "is_verified" not in columns:
                conn.execute("ALTER TABLE users ADD COLUMN is_verified INTEGER NOT NULL DEFAULT 0")
            if "password_hash" not in columns:
                conn.execute("ALTER TABLE users ADD COLUMN password_hash TEXT")

            # Tables created before the role CHECK existed get the same rule as triggers.
            table_sql = conn.execute(
                "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = 'users'"
            ).fetchone()["sql"]
            if "CHECK (role IN" not in table_sql:
                conn.executescript(
                    f"""
                    CREATE TRIGGER IF NOT EXISTS trg_users_role_insert
                    BEFORE INSERT ON users
                    WHEN NEW.role NOT IN ({_ROLE_VALUES})
                    BEGIN
                        SELECT RAISE(ABORT, 'invalid role');
                    END;

                    CREATE TRIGGER IF NOT EXISTS trg_users_role_update
                    BEFORE UPDATE OF role ON users
                    WHEN NEW.role NOT IN ({_ROLE_VALUES})
                    BEGIN
                        SELECT RAISE(ABORT, 'invalid role');
                    END;
                    """
                )

    # ------------------------------------------------------------------
    # Connection handles
    # ------------------------------------------------------------------
    async def acquire(self) -> UserStore:
        """Open a :class:`UserStore` handle; the caller owns closing it."""

        return await open_user_store(str(self._path))

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(
        self,
        name: str,
        email: str,
        password: str,
        *,
        role: UserRole = UserRole.CUSTOMER,
        is_verified: bool = False,
    ) -> User:
        """Create a new user account with a hashed password."""

        if not password:
            raise ValueError("Password must not be empty")
        normalized_name = name.strip()
        if not normalized_name:
            raise ValueError("Name must not be empty")
        normalized_email = email.strip().lower()
        if not normalized_email:
            raise ValueError("Email must not be empty")

        timestamp = serialize_datetime(current_timestamp())
        password_hash = _hash_password(password)

        with self._connection() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (
                        name, email, role, is_active, is_verified, password_hash, created_at, updated_at
                    )
                    VALUES (?, ?, ?, 1, ?, ?, ?, ?)
                    """,
                    (
                        normalized_name,
                        normalized_email,
                        UserRole(role).value,
                        int(bool(is_verified)),
                        password_hash,
                        timestamp,
                        timestamp,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("A user with that email already exists") from exc
            user_id = cursor.lastrowid

        user = self.get_user(user_id)
        if user is None:
            raise RuntimeError("Failed to load user after creation")
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (email.strip().lower(),),
            ).fetchone()
        if row is None:
            return None
        return row_to_user(row)

    def list_users(self) -> List[User]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [row_to_user(row) for row in rows]

    def verify_user_password(self, email: str, password: str) -> bool:
        """Return ``True`` if the supplied password matches the stored hash."""

        with self._connection() as conn:
            row = conn.execute(
                "SELECT password_hash FROM users WHERE email = ?",
                (email.strip().lower(),),
            ).fetchone()

        if row is None:
            return False

        stored_hash = row["password_hash"]
        if not stored_hash:
            return False

        return _verify_password(password, stored_hash)


__all__ = ["DB_PATH_ENV", "Database", "resolve_database_path"]
