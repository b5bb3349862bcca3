# portal/core/password_policy.py
from __future__ import annotations

import re

from fastapi import HTTPException, status

from portal.core.config import settings

COMMON_WEAK_PASSWORDS = {
    "password",
    "password1",
    "password1!",
    "password123",
    "passw0rd",
    "p@ssw0rd",
    "qwerty123",
    "qwerty1!",
    "welcome1",
    "welcome1!",
    "letmein1!",
    "abc123!!",
    "student1!",
    "teacher1!",
    "school123!",
    "admin123!",
}

_UPPERCASE_RE = re.compile(r"[A-Z]")
_LOWERCASE_RE = re.compile(r"[a-z]")
_NUMBER_RE = re.compile(r"[0-9]")
_SPECIAL_RE = re.compile(r"[^A-Za-z0-9]")

# Short local parts ("a@x.com") would match almost any password.
_MIN_EMAIL_FRAGMENT = 4


def evaluate_password(password: str, *, email: str | None = None) -> list[str]:
    """
    Returns violation codes in a stable order; an empty list means the password is acceptable.
    """
    pw = password or ""
    violations: list[str] = []

    if len(pw) < settings.PASSWORD_MIN_LENGTH:
        violations.append("min_length")
    if len(pw) > settings.PASSWORD_MAX_LENGTH:
        violations.append("max_length")
    if not _UPPERCASE_RE.search(pw):
        violations.append("uppercase")
    if not _LOWERCASE_RE.search(pw):
        violations.append("lowercase")
    if not _NUMBER_RE.search(pw):
        violations.append("number")
    if not _SPECIAL_RE.search(pw):
        violations.append("special_char")

    normalized_pw = pw.lower()
    local_part = (email or "").strip().lower().split("@")[0]
    if len(local_part) >= _MIN_EMAIL_FRAGMENT and local_part in normalized_pw:
        violations.append("contains_email")

    if normalized_pw in COMMON_WEAK_PASSWORDS:
        violations.append("denylist_common")

    return violations


def ensure_strong_password(password: str, *, email: str | None = None) -> None:
    violations = evaluate_password(password, email=email)
    if violations:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": "Password does not meet requirements.",
                "details": {"code": "WEAK_PASSWORD", "violations": violations},
            },
        )
