# portal/routes/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status

from portal.core.config import settings
from portal.core.cookies import clear_auth_cookies, read_refresh_cookie, set_auth_cookies
from portal.core.errors import ForbiddenError
from portal.core.password_policy import ensure_strong_password
from portal.core.roles import SELF_SERVICE_ROLES
from portal.dependencies.auth import AuthContext, get_current_user, require_auth
from portal.dependencies.rate_limit import require_rate_limit
from portal.dependencies.services import get_auth_service
from portal.models.user import User
from portal.schemas.auth import LoginIn, LoginOut, RegisterIn, TokenOut
from portal.schemas.user import RevokedSessionsOut, SessionOut, UserOut
from portal.services.auth import AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/register",
    response_model=UserOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_rate_limit("auth_register", limit=settings.RATE_LIMIT_REGISTER_PER_MINUTE))],
)
def register(payload: RegisterIn, auth: AuthService = Depends(get_auth_service)):
    if payload.role not in SELF_SERVICE_ROLES:
        raise ForbiddenError("Admin accounts can only be created by an administrator")

    ensure_strong_password(payload.password, email=payload.email)

    return auth.register(
        email=payload.email,
        password=payload.password,
        name=payload.name.strip(),
        role=payload.role,
    )


@router.post(
    "/login",
    response_model=LoginOut,
    dependencies=[Depends(require_rate_limit("auth_login", limit=settings.RATE_LIMIT_LOGIN_PER_MINUTE))],
)
def login(payload: LoginIn, response: Response, auth: AuthService = Depends(get_auth_service)):
    result = auth.login(payload.email, payload.password)
    set_auth_cookies(response, result.tokens.access_token, result.tokens.refresh_token)
    return {
        "access_token": result.tokens.access_token,
        "token_type": "bearer",
        "expires_in": result.tokens.expires_in,
        "user": result.user,
    }


@router.post(
    "/refresh",
    response_model=TokenOut,
    dependencies=[Depends(require_rate_limit("auth_refresh", limit=settings.RATE_LIMIT_REFRESH_PER_MINUTE))],
)
def refresh(request: Request, response: Response, auth: AuthService = Depends(get_auth_service)):
    tokens = auth.refresh(read_refresh_cookie(request))
    set_auth_cookies(response, tokens.access_token, tokens.refresh_token)
    return {"access_token": tokens.access_token, "token_type": "bearer", "expires_in": tokens.expires_in}


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(request: Request, auth: AuthService = Depends(get_auth_service)):
    auth.logout(read_refresh_cookie(request))

    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_auth_cookies(response)
    return response


@router.get("/me", response_model=UserOut)
def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.get("/sessions", response_model=list[SessionOut])
def list_sessions(
    request: Request,
    ctx: AuthContext = Depends(require_auth),
    auth: AuthService = Depends(get_auth_service),
):
    return auth.get_active_sessions(ctx.user_id, current_refresh_token=read_refresh_cookie(request))


@router.delete("/sessions", response_model=RevokedSessionsOut)
def revoke_all_sessions(
    response: Response,
    ctx: AuthContext = Depends(require_auth),
    auth: AuthService = Depends(get_auth_service),
):
    revoked = auth.revoke_all_sessions(ctx.user_id)
    clear_auth_cookies(response)
    return {"revoked": revoked}
