# portal/dependencies/auth.py
"""
Authorization gate.

authenticate() and authorize() are pure: no store or database access, only
the token signature/expiry and the role claim. The FastAPI dependencies chain
them (require_auth -> require_role) and pass the AuthContext along as a value.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from portal.core.cookies import read_access_cookie
from portal.core.database import database_guard, get_db
from portal.core.errors import AccountSuspendedError, ForbiddenError, TokenError, UnauthorizedError
from portal.core.roles import Role, is_allowed
from portal.core.security import verify_access_token
from portal.models.user import User
from portal.services.users import find_user_by_id

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    role: Role


def authenticate(token: str | None) -> AuthContext:
    """
    Any verification failure (missing, malformed, tampered, expired) becomes
    the same bare UnauthorizedError, so callers cannot tell them apart.
    """
    if not token:
        raise UnauthorizedError()
    try:
        claims = verify_access_token(token)
    except TokenError as exc:
        logger.debug("Access token rejected: %s", exc.__class__.__name__)
        raise UnauthorizedError() from exc
    return AuthContext(user_id=claims.user_id, role=claims.role)


def authorize(ctx: AuthContext, allowed: Iterable[Role]) -> AuthContext:
    if not is_allowed(ctx.role, allowed):
        raise ForbiddenError("Insufficient role")
    return ctx


def require_auth(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthContext:
    """
    Reads the access token from the access cookie; an Authorization: Bearer
    header is accepted for non-browser clients.
    """
    token = read_access_cookie(request)
    if token is None and creds is not None and creds.scheme.lower() == "bearer":
        token = creds.credentials
    return authenticate(token)


def require_role(*roles: Role) -> Callable[..., AuthContext]:
    allowed = frozenset(roles)
    if not allowed:
        raise ValueError("require_role needs at least one role")

    def dependency(ctx: AuthContext = Depends(require_auth)) -> AuthContext:
        return authorize(ctx, allowed)

    return dependency


def get_current_user(
    ctx: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> User:
    """Loads the row behind the token (for endpoints that need fresh user state)."""
    with database_guard(db, "load current user"):
        user = find_user_by_id(db, ctx.user_id)
    if user is None:
        raise UnauthorizedError()
    if user.suspended:
        raise AccountSuspendedError()
    return user
