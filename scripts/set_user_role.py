"""Promote or demote a single account, e.g. fixing an editor left as CUSTOMER."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from newsdesk.database import Database, resolve_database_path
from newsdesk.tasks import UpdateUserTask, run_task

EMAIL_ENV = "NEWSDESK_TARGET_EMAIL"
ROLE_ENV = "NEWSDESK_TARGET_ROLE"


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Set the role of an existing account")
    parser.add_argument(
        "email",
        nargs="?",
        default=os.getenv(EMAIL_ENV),
        help=f"Email address of the account (defaults to {EMAIL_ENV})",
    )
    parser.add_argument(
        "role",
        nargs="?",
        default=os.getenv(ROLE_ENV, "EDITOR"),
        help=f"Role to assign (defaults to {ROLE_ENV} or EDITOR)",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="Override the database location (defaults to NEWSDESK_DB_PATH or the repository data directory)",
    )
    args = parser.parse_args(argv)
    if not args.email:
        parser.error(f"an email address is required (argument or {EMAIL_ENV})")
    return args


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    database = Database(resolve_database_path(args.db_path))
    task = UpdateUserTask(email=args.email, changes={"role": args.role})
    return run_task(task, acquire=database.acquire).exit_code


if __name__ == "__main__":
    raise SystemExit(main())
