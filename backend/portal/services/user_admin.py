# portal/services/user_admin.py
"""
Admin-only account actions.

The role claim in the access token only gets a request through the gate.
Every action here re-reads the acting admin under a row lock and refuses
to continue unless that row is still a non-suspended admin, so a suspended
or demoted admin loses these powers immediately, not at token expiry.

Admins never act on their own suspension flag or role. Together with the
lock this keeps at least one active admin at all times: the acting admin
is one and stays one. Two admins suspending each other concurrently are
serialized by the lock; the second sees itself suspended and is refused.

Suspension and role changes revoke the target's sessions so the change
applies on their next refresh at the latest.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from portal.core.database import database_guard
from portal.core.errors import ForbiddenError, InvalidStateError, NotFoundError
from portal.core.roles import Role
from portal.models.user import User
from portal.services.auth import AuthService, PublicUser
from portal.services.users import find_user_by_id, lock_active_admins, update_user

logger = logging.getLogger(__name__)


def _require_active_admin(db: Session, acting_user_id: str) -> None:
    """Locks the active admin rows; the lock lasts until the caller's commit."""
    if not any(admin.id == acting_user_id for admin in lock_active_admins(db)):
        db.rollback()
        logger.info("Admin action refused: user id=%s is no longer an active admin", acting_user_id)
        raise ForbiddenError("Administrator access required")


def _get_target(db: Session, user_id: str) -> User:
    user = find_user_by_id(db, user_id)
    if user is None:
        db.rollback()
        raise NotFoundError("User not found")
    return user


def create_user_as_admin(
    auth: AuthService,
    *,
    acting_user_id: str,
    email: str,
    password: str,
    name: str,
    role: Role,
) -> PublicUser:
    with database_guard(auth.db, "admin create user"):
        _require_active_admin(auth.db, acting_user_id)
    user = auth.register(email=email, password=password, name=name, role=role)
    logger.info("Admin id=%s created user id=%s role=%s", acting_user_id, user.id, user.role.value)
    return user


def suspend_user(db: Session, auth: AuthService, *, target_user_id: str, acting_user_id: str) -> tuple[PublicUser, int]:
    """Returns the updated user and how many sessions were revoked."""
    if target_user_id == acting_user_id:
        raise ForbiddenError("You cannot suspend your own account")

    with database_guard(db, "suspend user"):
        _require_active_admin(db, acting_user_id)
        user = _get_target(db, target_user_id)
        if user.suspended:
            db.rollback()
            raise InvalidStateError("User is already suspended")
        update_user(db, user, suspended=True)

    revoked = auth.revoke_all_sessions(user.id)
    logger.info("User id=%s suspended by id=%s (%s session(s) revoked)", user.id, acting_user_id, revoked)
    return PublicUser.from_user(user), revoked


def unsuspend_user(db: Session, *, target_user_id: str, acting_user_id: str) -> PublicUser:
    if target_user_id == acting_user_id:
        raise ForbiddenError("You cannot unsuspend your own account")

    with database_guard(db, "unsuspend user"):
        _require_active_admin(db, acting_user_id)
        user = _get_target(db, target_user_id)
        if not user.suspended:
            db.rollback()
            raise InvalidStateError("User is not suspended")
        update_user(db, user, suspended=False)

    logger.info("User id=%s unsuspended by id=%s", user.id, acting_user_id)
    return PublicUser.from_user(user)


def change_user_role(
    db: Session,
    auth: AuthService,
    *,
    target_user_id: str,
    role: Role,
    acting_user_id: str,
) -> tuple[PublicUser, int]:
    if target_user_id == acting_user_id:
        raise ForbiddenError("You cannot change your own role")

    with database_guard(db, "change role"):
        _require_active_admin(db, acting_user_id)
        user = _get_target(db, target_user_id)
        if user.role == role.value:
            db.commit()
            return PublicUser.from_user(user), 0
        update_user(db, user, role=role)

    revoked = auth.revoke_all_sessions(user.id)
    logger.info("User id=%s role set to %s by id=%s", user.id, role.value, acting_user_id)
    return PublicUser.from_user(user), revoked


def revoke_user_sessions(db: Session, auth: AuthService, *, target_user_id: str, acting_user_id: str) -> int:
    with database_guard(db, "admin revoke sessions"):
        _require_active_admin(db, acting_user_id)
        db.commit()

    revoked = auth.revoke_all_sessions(target_user_id)
    logger.info("Admin id=%s revoked %s session(s) of user id=%s", acting_user_id, revoked, target_user_id)
    return revoked
