"""Create an account with a given role unless one already exists for the email."""

from __future__ import annotations

import argparse
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from newsdesk.database import DB_PATH_ENV, Database, resolve_database_path
from newsdesk.models import UserRole


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a newsletter account with a given role")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address for login")
    parser.add_argument(
        "--role",
        type=UserRole.parse,
        default=UserRole.EDITOR,
        help="Role for the new account (default: EDITOR)",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help=f"Path to the SQLite database (defaults to {DB_PATH_ENV} or data/newsdesk.sqlite3)",
    )
    return parser.parse_args(argv)


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < 8:
            print("Password must be at least 8 characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    database = Database(resolve_database_path(args.db_path))
    database.initialize()

    existing = database.get_user_by_email(args.email)
    if existing is not None:
        print(f"User {existing.email} already exists with role {existing.role}; nothing to do.")
        return 0

    password = prompt_for_password()

    try:
        user = database.create_user(args.name, args.email, password, role=args.role, is_verified=True)
    except ValueError as exc:  # duplicates, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.name} <{user.email}> as {user.role}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
