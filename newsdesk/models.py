"""Domain models for the newsletter user store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class UserRole(str, Enum):
    """Roles a newsletter account can hold."""

    CUSTOMER = "CUSTOMER"
    EDITOR = "EDITOR"
    PUBLISHER = "PUBLISHER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"

    @classmethod
    def parse(cls, value: str) -> "UserRole":
        try:
            return cls(value.strip().upper())
        except ValueError as exc:
            choices = ", ".join(role.value for role in cls)
            raise ValueError(f"Unknown role {value!r} (expected one of: {choices})") from exc


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the newsletter database."""

    id: int
    name: str
    email: str
    role: str
    is_active: bool
    is_verified: bool
    created_at: datetime
    updated_at: datetime


# Columns that may be projected by read tasks. ``password_hash`` is never exposed.
USER_FIELDS = (
    "id",
    "name",
    "email",
    "role",
    "is_active",
    "is_verified",
    "created_at",
    "updated_at",
)

MUTABLE_FIELDS = ("name", "role", "is_active", "is_verified")


__all__ = ["MUTABLE_FIELDS", "USER_FIELDS", "User", "UserRole"]
