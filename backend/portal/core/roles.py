# portal/core/roles.py
from __future__ import annotations

from enum import Enum
from typing import Iterable


class Role(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"


# Least-privileged role; used for OAuth first logins and default registration.
DEFAULT_ROLE = Role.STUDENT

# Roles a visitor may pick for themselves on public registration.
SELF_SERVICE_ROLES = frozenset({Role.TEACHER, Role.STUDENT})


def parse_role(value: str | Role) -> Role:
    """Raises ValueError for anything outside the three portal roles."""
    if isinstance(value, Role):
        return value
    return Role(str(value).strip().lower())


def is_allowed(role: Role, allowed: Iterable[Role]) -> bool:
    return role in frozenset(allowed)
