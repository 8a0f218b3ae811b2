"""Configuration files for bulk administrative updates."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Tuple

import yaml

from .models import UserRole
from .tasks import UpdateUserTask


@dataclass(frozen=True)
class RoleAssignment:
    """The role a given account is expected to hold."""

    email: str
    role: UserRole
    activate: bool = False

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "RoleAssignment":
        """Create a :class:`RoleAssignment` from raw dictionary data."""
        if not isinstance(data, dict):
            raise ValueError(f"Role assignment must be a mapping, got {type(data).__name__}")
        required_fields = {"email", "role"}
        missing = required_fields - data.keys()
        if missing:
            raise ValueError(f"Missing required role assignment fields: {', '.join(sorted(missing))}")

        email = str(data["email"]).strip().lower()
        if not email:
            raise ValueError("Role assignment email must not be empty")

        return RoleAssignment(
            email=email,
            role=UserRole.parse(str(data["role"])),
            activate=bool(data.get("activate", False)),
        )

    def to_task(self) -> UpdateUserTask:
        changes: Dict[str, object] = {"role": self.role.value}
        if self.activate:
            changes["is_active"] = True
            changes["is_verified"] = True
        return UpdateUserTask(
            email=self.email,
            changes=changes,
            display_fields=("email", "role", "is_active", "is_verified"),
        )


def load_role_assignments(config_path: Path) -> Tuple[RoleAssignment, ...]:
    """Load role assignments from a YAML file."""
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError("Role assignment file must contain a mapping at the top level")

    assignments_raw = raw.get("assignments")
    if not assignments_raw:
        raise ValueError("Role assignment file must define at least one entry under the 'assignments' key")

    assignments = tuple(RoleAssignment.from_dict(item) for item in assignments_raw)
    emails = [assignment.email for assignment in assignments]
    duplicates = sorted({email for email in emails if emails.count(email) > 1})
    if duplicates:
        raise ValueError(f"Duplicate role assignments for: {', '.join(duplicates)}")
    return assignments


__all__ = ["RoleAssignment", "load_role_assignments"]
