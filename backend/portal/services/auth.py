# portal/services/auth.py
"""
Auth orchestrator: login, refresh-token rotation, logout and session management.

Session lifecycle per refresh token:
    anonymous -> authenticated -> (refreshed)* -> logged out
An admin suspension can end it at any point; it takes effect on the next
login/refresh. Access tokens already handed out stay valid until they expire
(ACCESS_TOKEN_EXPIRE_MINUTES), since the per-request check never reads the store.

Errors leave this module only as portal.core.errors types. Database and Redis
failures become ServiceUnavailableError; their details are logged, not returned.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.database import database_guard
from portal.core.errors import (
    AccountSuspendedError,
    ConflictError,
    InvalidCredentialsError,
    UnauthorizedError,
)
from portal.core.roles import DEFAULT_ROLE, Role, parse_role
from portal.core.security import (
    burn_password_check,
    hash_password,
    issue_access_token,
    issue_refresh_token,
    password_needs_rehash,
    token_fingerprint,
    verify_password,
)
from portal.models.user import User
from portal.services.sessions import SessionStore
from portal.services.users import (
    create_user,
    find_user_by_email,
    find_user_by_id,
    normalize_email,
    update_user,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublicUser:
    """User fields that may leave the service layer (no password hash)."""

    id: str
    email: str
    name: str
    role: Role
    suspended: bool
    created_at: datetime | None

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=Role(user.role),
            suspended=bool(user.suspended),
            created_at=user.created_at,
        )


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


@dataclass(frozen=True)
class LoginResult:
    tokens: TokenPair
    user: PublicUser


@dataclass(frozen=True)
class SessionSummary:
    id: str
    created_at: datetime
    expires_at: datetime
    current: bool


class AuthService:
    def __init__(self, db: Session, sessions: SessionStore, *, refresh_ttl_seconds: int | None = None) -> None:
        self.db = db
        self.sessions = sessions
        self.refresh_ttl_seconds = refresh_ttl_seconds or settings.refresh_token_ttl_seconds

    # -------------------------
    # Registration / credentials
    # -------------------------
    def register(self, *, email: str, password: str, name: str, role: Role | str = DEFAULT_ROLE) -> PublicUser:
        """
        Create a password account.

        Raises:
            ConflictError: the (normalized) email is already registered.
            ValueError: unknown role.
        """
        normalized = normalize_email(email)
        parsed_role = parse_role(role)

        with database_guard(self.db, "register"):
            if find_user_by_email(self.db, normalized) is not None:
                raise ConflictError("Email already registered")
            try:
                user = create_user(
                    self.db,
                    email=normalized,
                    name=name,
                    password_hash=hash_password(password),
                    role=parsed_role,
                )
            except IntegrityError as exc:
                self.db.rollback()
                raise ConflictError("Email already registered") from exc

        return PublicUser.from_user(user)

    def login(self, email: str, password: str) -> LoginResult:
        """
        Unknown email and wrong password raise the same InvalidCredentialsError,
        and both paths pay for one hash verification.
        """
        normalized = normalize_email(email)

        with database_guard(self.db, "login"):
            user = find_user_by_email(self.db, normalized) if normalized else None
            if user is None:
                burn_password_check()
                logger.info("Login rejected: unknown account")
                raise InvalidCredentialsError()

            if not verify_password(password, user.password_hash):
                logger.info("Login rejected: bad password for user id=%s", user.id)
                raise InvalidCredentialsError()

            if user.suspended:
                logger.info("Login rejected: user id=%s is suspended", user.id)
                raise AccountSuspendedError()

            if user.password_hash and password_needs_rehash(user.password_hash):
                update_user(self.db, user, password_hash=hash_password(password))
                logger.info("Upgraded password hash for user id=%s", user.id)

        tokens = self.start_session(user)
        logger.info("Login succeeded for user id=%s", user.id)
        return LoginResult(tokens=tokens, user=PublicUser.from_user(user))

    def change_password(self, user_id: str, current_password: str | None, new_password: str) -> int:
        """
        Store a new password and revoke every session of the user.

        Accounts without a password (OAuth-only) may set one without supplying
        the current password. Returns the number of sessions revoked.
        """
        with database_guard(self.db, "change password"):
            user = find_user_by_id(self.db, user_id)
            if user is None:
                raise UnauthorizedError()
            if user.suspended:
                raise AccountSuspendedError()
            if user.password_hash and not verify_password(current_password or "", user.password_hash):
                raise InvalidCredentialsError("Current password is incorrect")

            update_user(self.db, user, password_hash=hash_password(new_password))

        logger.info("Password changed for user id=%s", user_id)
        return self.revoke_all_sessions(user_id)

    # -------------------------
    # Sessions
    # -------------------------
    def start_session(self, user: User) -> TokenPair:
        """Mint an access/refresh pair for an already authenticated user."""
        if user.suspended:
            raise AccountSuspendedError()

        refresh_token = issue_refresh_token()
        self.sessions.create(user.id, refresh_token, self.refresh_ttl_seconds)
        access_token = issue_access_token(user.id, Role(user.role))
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        )

    def refresh(self, refresh_token: str | None) -> TokenPair:
        """
        Rotate a refresh token.

        The old session is deleted before the new one is written. Of two
        concurrent calls with the same token only the one whose delete
        removed the record continues; the other gets UnauthorizedError. A
        failure between the delete and the create ends the session (the
        client logs in again), it never duplicates it.
        """
        if not refresh_token:
            raise UnauthorizedError()

        record = self.sessions.get(refresh_token)
        if record is None:
            logger.info("Refresh rejected: unknown session %s", token_fingerprint(refresh_token))
            raise UnauthorizedError()

        with database_guard(self.db, "refresh"):
            user = find_user_by_id(self.db, record.user_id)

        if user is None or user.suspended:
            self.sessions.delete(refresh_token)
            logger.info("Refresh rejected: user id=%s missing or suspended", record.user_id)
            raise UnauthorizedError()

        if not self.sessions.delete(refresh_token):
            logger.warning(
                "Refresh rejected: session %s already rotated (concurrent reuse)",
                token_fingerprint(refresh_token),
            )
            raise UnauthorizedError()

        new_refresh_token = issue_refresh_token()
        self.sessions.create(user.id, new_refresh_token, self.refresh_ttl_seconds)

        # Claims come from the current row, so role changes apply on the next refresh.
        access_token = issue_access_token(user.id, Role(user.role))
        return TokenPair(
            access_token=access_token,
            refresh_token=new_refresh_token,
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        )

    def logout(self, refresh_token: str | None) -> None:
        """Idempotent: a missing or already deleted session is not an error."""
        if not refresh_token:
            return
        if self.sessions.delete(refresh_token):
            logger.info("Logged out session %s", token_fingerprint(refresh_token))

    def revoke_all_sessions(self, user_id: str) -> int:
        return self.sessions.delete_all_for_user(user_id)

    def get_active_sessions(self, user_id: str, current_refresh_token: str | None = None) -> list[SessionSummary]:
        return [
            SessionSummary(
                id=record.fingerprint,
                created_at=record.created_at,
                expires_at=record.expires_at,
                current=current_refresh_token is not None and record.refresh_token == current_refresh_token,
            )
            for record in self.sessions.list_for_user(user_id)
        ]
