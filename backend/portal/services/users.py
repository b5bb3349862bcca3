# portal/services/users.py
"""
User store helpers used by the auth core.

Responsibilities:
- Lookup by id and by (normalized) email
- Creating users with a normalized email/name
- Applying admin-controlled changes (suspension flag, role)
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from portal.core.roles import Role
from portal.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Portal User"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def normalize_name(name: str | None, fallback: str) -> str:
    """Normalize name, falling back to the email local part if needed."""
    if name:
        clean = name.strip()
        if clean:
            return clean[:100]

    if fallback and "@" in fallback:
        local = fallback.split("@", 1)[0]
        if local:
            return local[:100]
    return DEFAULT_NAME


def find_user_by_id(db: Session, user_id: str) -> Optional[User]:
    if not user_id:
        return None
    return db.get(User, user_id)


def find_user_by_email(db: Session, email: str) -> Optional[User]:
    """Case-insensitive lookup; emails are stored normalized."""
    normalized = normalize_email(email)
    if not normalized:
        return None
    return db.query(User).filter(User.email == normalized).first()


def create_user(
    db: Session,
    *,
    email: str,
    name: str | None,
    password_hash: str | None,
    role: Role = Role.STUDENT,
    commit: bool = True,
) -> User:
    """
    Insert a new user and commit (or only flush, when the caller owns the transaction).

    Args:
        db: Database session
        email: Raw email; stored trimmed and lower-cased
        name: Display name; falls back to the email local part
        password_hash: Already-hashed password, or None for OAuth-only accounts
        role: Initial role
        commit: False to flush only, so the caller can add related rows atomically

    Raises:
        sqlalchemy.exc.IntegrityError: If the email is already taken (callers map this to a conflict)
    """
    normalized_email = normalize_email(email)
    if not normalized_email:
        raise ValueError("email is required")

    user = User(
        email=normalized_email,
        name=normalize_name(name, fallback=normalized_email),
        password_hash=password_hash,
        role=Role(role).value,
        suspended=False,
    )
    db.add(user)
    if commit:
        db.commit()
        db.refresh(user)
    else:
        db.flush()

    logger.info("Created user id=%s role=%s", user.id, user.role)
    return user


def update_user(
    db: Session,
    user: User,
    *,
    suspended: bool | None = None,
    role: Role | None = None,
    password_hash: str | None = None,
) -> User:
    """Apply the given changes (None = leave as is) and commit."""
    if suspended is not None:
        user.suspended = suspended
    if role is not None:
        user.role = Role(role).value
    if password_hash is not None:
        user.password_hash = password_hash

    db.commit()
    db.refresh(user)
    return user


def lock_active_admins(db: Session) -> list[User]:
    """
    Active admin rows, locked FOR UPDATE until the caller commits or rolls back.

    Rows are locked in id order so two admin actions never deadlock on each
    other; the second one waits and then sees the first one's result.
    """
    return (
        db.query(User)
        .filter(User.role == Role.ADMIN.value, User.suspended.is_(False))
        .order_by(User.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
