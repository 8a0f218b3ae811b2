"""Command-line interface for newsletter user administration."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from pathlib import Path
from typing import List, Sequence, Tuple

from newsdesk.config import load_role_assignments
from newsdesk.database import Database, resolve_database_path
from newsdesk.models import MUTABLE_FIELDS, USER_FIELDS, UserRole
from newsdesk.reporting import ConsoleReporter
from newsdesk.tasks import (
    DEFAULT_DISPLAY_FIELDS,
    DEFAULT_LIST_FIELDS,
    ListUsersTask,
    LookupUserTask,
    UpdateUserTask,
    run_task,
    run_tasks,
)

logger = logging.getLogger("newsdesk.main")

MIN_PASSWORD_LENGTH = 8
_ROLE_HELP = ", ".join(role.value for role in UserRole)


def _fields_argument(value: str) -> Tuple[str, ...]:
    fields = tuple(part.strip() for part in value.split(",") if part.strip())
    if not fields:
        raise argparse.ArgumentTypeError("at least one field is required")
    unknown = [name for name in fields if name not in USER_FIELDS]
    if unknown:
        raise argparse.ArgumentTypeError(
            f"unknown field(s) {', '.join(unknown)} (choose from {', '.join(USER_FIELDS)})"
        )
    return fields


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Newsletter user administration utilities")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to NEWSDESK_DB_PATH or data/newsdesk.sqlite3)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create or migrate the user database")

    create_parser = subparsers.add_parser("create-user", help="Create a new account")
    create_parser.add_argument("name", help="Display name for the user")
    create_parser.add_argument("email", help="Unique email address for login")
    create_parser.add_argument(
        "--role",
        type=UserRole.parse,
        default=UserRole.CUSTOMER,
        help=f"Role for the account ({_ROLE_HELP}; default: CUSTOMER)",
    )
    create_parser.add_argument(
        "--verified",
        action="store_true",
        help="Mark the email address as already verified",
    )

    role_parser = subparsers.add_parser("set-role", help="Change the role of an existing account")
    role_parser.add_argument("email", help="Email address of the account to update")
    role_parser.add_argument("role", help=f"New role ({_ROLE_HELP})")

    update_parser = subparsers.add_parser("update-user", help="Update fields of an existing account")
    update_parser.add_argument("email", help="Email address of the account to update")
    update_parser.add_argument("--name", default=None, help="New display name")
    update_parser.add_argument("--role", default=None, help=f"New role ({_ROLE_HELP})")
    active_group = update_parser.add_mutually_exclusive_group()
    active_group.add_argument("--active", dest="is_active", action="store_true", default=None)
    active_group.add_argument("--inactive", dest="is_active", action="store_false")
    verified_group = update_parser.add_mutually_exclusive_group()
    verified_group.add_argument("--verified", dest="is_verified", action="store_true", default=None)
    verified_group.add_argument("--unverified", dest="is_verified", action="store_false")

    show_parser = subparsers.add_parser("show-user", help="Show a single account")
    show_parser.add_argument("email", help="Email address of the account")
    show_parser.add_argument(
        "--fields",
        type=_fields_argument,
        default=DEFAULT_DISPLAY_FIELDS,
        help=f"Comma separated fields to display (default: {','.join(DEFAULT_DISPLAY_FIELDS)})",
    )

    list_parser = subparsers.add_parser("list-users", help="List all accounts")
    list_parser.add_argument(
        "--fields",
        type=_fields_argument,
        default=DEFAULT_LIST_FIELDS,
        help=f"Comma separated fields to display (default: {','.join(DEFAULT_LIST_FIELDS)})",
    )
    list_parser.add_argument("--json", action="store_true", help="Emit the records as a JSON array")

    apply_parser = subparsers.add_parser(
        "apply-roles", help="Apply role assignments from a YAML file"
    )
    apply_parser.add_argument("path", type=Path, help="YAML file with an 'assignments' list")

    login_parser = subparsers.add_parser(
        "check-login", help="Check whether a password is valid for an account"
    )
    login_parser.add_argument("email", help="Email address of the account")

    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.command == "update-user":
        changes = {
            name: getattr(args, name)
            for name in MUTABLE_FIELDS
            if getattr(args, name) is not None
        }
        if not changes:
            update_parser.error("at least one of --name, --role, --active/--inactive, --verified/--unverified is required")
        args.changes = changes

    return args


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {MIN_PASSWORD_LENGTH} characters): ")
        if len(password) < MIN_PASSWORD_LENGTH:
            print("Password is too short. Please try again.", file=sys.stderr)
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.", file=sys.stderr)
            continue
        return password
    return None


def _initialise_database(database: Database) -> int:
    database.initialize()
    logger.info("Database initialised at %s", database.path)
    print(f"Database ready at {database.path}")
    return 0


def _create_user(database: Database, args: argparse.Namespace) -> int:
    database.initialize()
    password = _prompt_for_password()
    if password is None:
        print("Failed to set password after three attempts.", file=sys.stderr)
        return 1

    try:
        user = database.create_user(
            args.name,
            args.email,
            password,
            role=args.role,
            is_verified=args.verified,
        )
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.name} <{user.email}> ({user.role})")
    return 0


def _check_login(database: Database, email: str) -> int:
    if not database.path.exists():
        print(f"No user database at {database.path}; run init-db first", file=sys.stderr)
        return 1
    password = getpass("Password: ")
    user = database.get_user_by_email(email)
    if user is None:
        print(f"No user with email {email.strip().lower()!r}", file=sys.stderr)
        return 1
    if not database.verify_user_password(user.email, password):
        print(f"Password is incorrect for {user.email}", file=sys.stderr)
        return 1
    if not user.is_active:
        print(f"Password is valid but {user.email} is inactive", file=sys.stderr)
        return 1
    print(f"Password is valid for {user.email} ({user.role})")
    return 0


def _apply_roles(database: Database, path: Path, reporter: ConsoleReporter) -> int:
    try:
        assignments = load_role_assignments(path)
    except (OSError, ValueError) as exc:
        print(f"Error: could not load role assignments from {path}: {exc}", file=sys.stderr)
        return 1

    outcomes = run_tasks(
        [assignment.to_task() for assignment in assignments],
        acquire=database.acquire,
        reporter=reporter,
    )
    failed: List[str] = [
        assignment.email
        for assignment, outcome in zip(assignments, outcomes)
        if not outcome.succeeded
    ]
    print(f"Applied {len(outcomes) - len(failed)} of {len(outcomes)} role assignment(s).")
    if failed:
        print(f"Failed: {', '.join(failed)}", file=sys.stderr)
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    database = Database(resolve_database_path(args.db_path))
    reporter = ConsoleReporter(as_json=getattr(args, "json", False))

    try:
        if args.command == "init-db":
            return _initialise_database(database)
        if args.command == "create-user":
            return _create_user(database, args)
        if args.command == "check-login":
            return _check_login(database, args.email)
        if args.command == "apply-roles":
            return _apply_roles(database, args.path, reporter)

        if args.command == "set-role":
            task = UpdateUserTask(email=args.email, changes={"role": args.role})
        elif args.command == "update-user":
            task = UpdateUserTask(email=args.email, changes=args.changes)
        elif args.command == "show-user":
            task = LookupUserTask(email=args.email, fields=args.fields)
        else:
            task = ListUsersTask(fields=args.fields)
    except KeyboardInterrupt:
        print("\nAborted.", file=sys.stderr)
        return 130
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    outcome = run_task(task, acquire=database.acquire, reporter=reporter)
    return outcome.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
