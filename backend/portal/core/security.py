# portal/core/security.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import secrets
from hashlib import sha256

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from portal.core.config import MIN_PASSWORD_HASH_ROUNDS, settings
from portal.core.errors import ExpiredTokenError, InvalidTokenError, MalformedTokenError
from portal.core.roles import Role

# pbkdf2_sha512: HMAC-SHA512, 64-byte derived key, per-hash random salt.
# passlib compares digests in constant time.
pwd_context = CryptContext(
    schemes=["pbkdf2_sha512"],
    deprecated="auto",
    pbkdf2_sha512__default_rounds=settings.PASSWORD_HASH_ROUNDS,
    pbkdf2_sha512__min_rounds=MIN_PASSWORD_HASH_ROUNDS,
)

ACCESS_TOKEN_PURPOSE = "access"


# -------------------------
# Password hashing
# -------------------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    """
    Check a candidate password against a stored hash.

    Accounts without a password (OAuth-only) and unreadable hashes never match.
    A dummy verification still runs for missing hashes so the call costs about
    the same either way.
    """
    if not password_hash:
        pwd_context.dummy_verify()
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError):
        return False


def burn_password_check() -> None:
    """Spend one hash verification's worth of time (unknown-user logins)."""
    pwd_context.dummy_verify()


def password_needs_rehash(password_hash: str) -> bool:
    try:
        return pwd_context.needs_update(password_hash)
    except ValueError:
        return False


# -------------------------
# Access tokens
# -------------------------
@dataclass(frozen=True)
class AccessTokenClaims:
    user_id: str
    role: Role
    issued_at: datetime
    expires_at: datetime


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _require_jwt_secret() -> str:
    # Auth is always on -> JWT_SECRET must always exist
    if not settings.JWT_SECRET or not settings.JWT_SECRET.strip():
        raise RuntimeError("JWT_SECRET must be set (auth is required).")
    return settings.JWT_SECRET


def issue_access_token(user_id: str, role: Role | str, *, expires_delta: timedelta | None = None) -> str:
    """
    Short-lived access token: {sub, role, purpose, iat, exp}, HMAC-signed.
    Verified per request without any store lookup.
    """
    secret = _require_jwt_secret()

    now = _now_utc()
    exp = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))

    payload = {
        "sub": str(user_id),
        "role": Role(role).value,
        "purpose": ACCESS_TOKEN_PURPOSE,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }

    return jwt.encode(payload, secret, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> AccessTokenClaims:
    """
    Raises MalformedTokenError when the token is not a decodable JWT or lacks
    usable claims, ExpiredTokenError past `exp`, and InvalidTokenError for a
    bad signature or wrong purpose.
    """
    secret = _require_jwt_secret()

    if not token or token.count(".") != 2:
        raise MalformedTokenError("Token is not a JWT")

    try:
        jwt.get_unverified_header(token)
        jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise MalformedTokenError("Token could not be decoded") from exc

    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise ExpiredTokenError("Token expired") from exc
    except JWTError as exc:
        raise InvalidTokenError("Token rejected") from exc

    if payload.get("purpose") != ACCESS_TOKEN_PURPOSE:
        raise InvalidTokenError("Wrong token purpose")

    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub:
        raise MalformedTokenError("Token has no subject")

    try:
        role = Role(payload.get("role"))
    except ValueError as exc:
        raise MalformedTokenError("Token has no valid role") from exc

    try:
        issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedTokenError("Token timestamps missing") from exc

    return AccessTokenClaims(user_id=sub, role=role, issued_at=issued_at, expires_at=expires_at)


# -------------------------
# Refresh tokens
# -------------------------
def issue_refresh_token() -> str:
    """
    Opaque refresh token: 48 random bytes, url-safe, no user data inside.
    Only meaningful together with its session record.
    """
    return secrets.token_urlsafe(48)


def token_fingerprint(token: str) -> str:
    """Short stable identifier for a refresh token, safe for logs and API output."""
    return sha256(token.encode("utf-8")).hexdigest()[:16]
