# portal/routes/admin_users.py
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.core.password_policy import ensure_strong_password
from portal.core.roles import Role
from portal.dependencies.auth import AuthContext, require_role
from portal.dependencies.services import get_auth_service
from portal.schemas.user import (
    AdminCreateUserIn,
    AdminUserActionOut,
    RevokedSessionsOut,
    RoleChangeIn,
    UserOut,
)
from portal.services import user_admin
from portal.services.auth import AuthService

router = APIRouter(prefix="/admin/users", tags=["admin"])

require_admin = require_role(Role.ADMIN)


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: AdminCreateUserIn,
    ctx: AuthContext = Depends(require_admin),
    auth: AuthService = Depends(get_auth_service),
):
    ensure_strong_password(payload.password, email=payload.email)
    return user_admin.create_user_as_admin(
        auth,
        acting_user_id=ctx.user_id,
        email=payload.email,
        password=payload.password,
        name=payload.name.strip(),
        role=payload.role,
    )


@router.post("/{user_id}/suspend", response_model=AdminUserActionOut)
def suspend_user(
    user_id: str,
    ctx: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    user, revoked = user_admin.suspend_user(db, auth, target_user_id=user_id, acting_user_id=ctx.user_id)
    return {"user": user, "revoked_sessions": revoked}


@router.post("/{user_id}/unsuspend", response_model=AdminUserActionOut)
def unsuspend_user(
    user_id: str,
    ctx: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = user_admin.unsuspend_user(db, target_user_id=user_id, acting_user_id=ctx.user_id)
    return {"user": user, "revoked_sessions": 0}


@router.patch("/{user_id}/role", response_model=AdminUserActionOut)
def change_role(
    user_id: str,
    payload: RoleChangeIn,
    ctx: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    user, revoked = user_admin.change_user_role(
        db,
        auth,
        target_user_id=user_id,
        role=payload.role,
        acting_user_id=ctx.user_id,
    )
    return {"user": user, "revoked_sessions": revoked}


@router.delete("/{user_id}/sessions", response_model=RevokedSessionsOut)
def revoke_user_sessions(
    user_id: str,
    ctx: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    revoked = user_admin.revoke_user_sessions(db, auth, target_user_id=user_id, acting_user_id=ctx.user_id)
    return {"revoked": revoked}
