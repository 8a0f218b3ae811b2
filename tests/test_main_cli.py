from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import pytest

import main
from main import _parse_args
from newsdesk.database import Database
from newsdesk.models import UserRole

EDITOR_EMAIL = "it.editor@example.test"


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "newsdesk.sqlite3"
    database = Database(path)
    database.initialize()
    database.create_user("IT Editor", EDITOR_EMAIL, "Sup3rSecurePwd!")
    return path


def test_command_is_required() -> None:
    with pytest.raises(SystemExit):
        _parse_args([])


def test_update_user_collects_changes() -> None:
    args = _parse_args(["update-user", EDITOR_EMAIL, "--role", "EDITOR", "--inactive"])
    assert args.command == "update-user"
    assert args.changes == {"role": "EDITOR", "is_active": False}


def test_update_user_requires_a_change() -> None:
    with pytest.raises(SystemExit):
        _parse_args(["update-user", EDITOR_EMAIL])


def test_list_fields_are_validated() -> None:
    args = _parse_args(["list-users", "--fields", "email, role"])
    assert args.fields == ("email", "role")
    with pytest.raises(SystemExit):
        _parse_args(["list-users", "--fields", "email,password_hash"])


def test_set_role_scenario_is_repeatable(db_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    reports = []
    for _ in range(2):
        assert main.main(["--db", str(db_path), "set-role", EDITOR_EMAIL, "EDITOR"]) == 0
        out = capsys.readouterr().out.strip().splitlines()
        assert len(out) == 1
        reports.append(out[0])

    assert reports[0] == reports[1]
    prefix, _, body = reports[0].partition(": ")
    assert prefix == "update-user succeeded"
    payload = json.loads(body)
    assert payload["email"] == EDITOR_EMAIL
    assert payload["role"] == "EDITOR"
    assert Database(db_path).get_user_by_email(EDITOR_EMAIL).role == UserRole.EDITOR.value


def test_set_role_on_missing_user_exits_non_zero(db_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = main.main(["--db", str(db_path), "set-role", "missing@example.test", "EDITOR"])

    assert code != 0
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "update-user failed [not_found]" in captured.err


def test_set_role_with_invalid_role_reports_constraint(db_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = main.main(["--db", str(db_path), "set-role", EDITOR_EMAIL, "WRITER"])

    assert code == 1
    captured = capsys.readouterr()
    assert "update-user failed [constraint]" in captured.err
    assert "cause: IntegrityError" in captured.err


def test_tasks_against_missing_database_report_connection_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    missing = tmp_path / "missing.sqlite3"

    assert main.main(["--db", str(missing), "list-users"]) == 1
    assert "list-users failed [connection]" in capsys.readouterr().err
    assert not missing.exists()


def test_list_users_json(db_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main.main(["--db", str(db_path), "list-users", "--json", "--fields", "email,role"]) == 0

    assert json.loads(capsys.readouterr().out) == [{"email": EDITOR_EMAIL, "role": "CUSTOMER"}]


def test_show_user(db_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main.main(["--db", str(db_path), "show-user", EDITOR_EMAIL, "--fields", "name,is_active"]) == 0

    body = capsys.readouterr().out.split(": ", 1)[1]
    assert json.loads(body) == {"name": "IT Editor", "is_active": True}


def test_apply_roles(db_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    roles = tmp_path / "roles.yaml"
    roles.write_text(
        "assignments:\n"
        f"  - email: {EDITOR_EMAIL}\n"
        "    role: PUBLISHER\n"
        "    activate: true\n"
        "  - email: ghost@example.test\n"
        "    role: ADMIN\n",
        encoding="utf-8",
    )

    assert main.main(["--db", str(db_path), "apply-roles", str(roles)]) == 1

    captured = capsys.readouterr()
    assert "Applied 1 of 2 role assignment(s)." in captured.out
    assert "ghost@example.test" in captured.err
    user = Database(db_path).get_user_by_email(EDITOR_EMAIL)
    assert user.role == "PUBLISHER"
    assert user.is_verified is True


def test_create_user_and_check_login(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    path = tmp_path / "fresh.sqlite3"
    monkeypatch.setattr(main, "getpass", lambda prompt="": "editor-password")

    assert main.main(["--db", str(path), "create-user", "Jane Editor", "editor@example.test", "--role", "editor"]) == 0
    assert "Created user #1: Jane Editor <editor@example.test> (EDITOR)" in capsys.readouterr().out

    assert main.main(["--db", str(path), "check-login", "editor@example.test"]) == 0
    assert "Password is valid" in capsys.readouterr().out

    monkeypatch.setattr(main, "getpass", lambda prompt="": "wrong-password")
    assert main.main(["--db", str(path), "check-login", "editor@example.test"]) == 1


def test_set_role_with_invalid_role_on_migrated_database(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
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
        "INSERT INTO users (name, email, created_at, updated_at) VALUES (?, ?, ?, ?)",
        ("IT Editor", EDITOR_EMAIL, "2024-01-01T00:00:00+00:00", "2024-01-01T00:00:00+00:00"),
    )
    conn.commit()
    conn.close()

    assert main.main(["--db", str(path), "init-db"]) == 0
    capsys.readouterr()

    assert main.main(["--db", str(path), "set-role", EDITOR_EMAIL, "WRITER"]) == 1
    assert "update-user failed [constraint]" in capsys.readouterr().err
    assert Database(path).get_user_by_email(EDITOR_EMAIL).role == "CUSTOMER"
