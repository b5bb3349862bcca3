# portal/core/cookies.py
"""
Credential carrier: access and refresh tokens travel only in HTTP-only cookies.

Both cookies are SameSite (lax by default) and Secure in prod. The refresh
cookie is scoped to the auth endpoints so it is not sent on every API call.
"""
from __future__ import annotations

from fastapi import Request, Response

from portal.core.config import settings


def _set(resp: Response, *, key: str, value: str, max_age: int, path: str) -> None:
    resp.set_cookie(
        key=key,
        value=value,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.COOKIE_SAMESITE,
        max_age=max_age,
        path=path,
        domain=settings.COOKIE_DOMAIN,
    )


def _clear(resp: Response, *, key: str, path: str) -> None:
    resp.delete_cookie(
        key=key,
        path=path,
        domain=settings.COOKIE_DOMAIN,
        secure=settings.cookie_secure,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
    )


def set_auth_cookies(resp: Response, access_token: str, refresh_token: str) -> None:
    _set(
        resp,
        key=settings.ACCESS_COOKIE_NAME,
        value=access_token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path=settings.ACCESS_COOKIE_PATH,
    )
    _set(
        resp,
        key=settings.REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=settings.refresh_token_ttl_seconds,
        path=settings.REFRESH_COOKIE_PATH,
    )


def clear_auth_cookies(resp: Response) -> None:
    _clear(resp, key=settings.ACCESS_COOKIE_NAME, path=settings.ACCESS_COOKIE_PATH)
    _clear(resp, key=settings.REFRESH_COOKIE_NAME, path=settings.REFRESH_COOKIE_PATH)


def read_access_cookie(req: Request) -> str | None:
    val = req.cookies.get(settings.ACCESS_COOKIE_NAME)
    return val.strip() if val and val.strip() else None


def read_refresh_cookie(req: Request) -> str | None:
    val = req.cookies.get(settings.REFRESH_COOKIE_NAME)
    return val.strip() if val and val.strip() else None
