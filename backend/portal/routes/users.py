# portal/routes/users.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from portal.core.cookies import clear_auth_cookies
from portal.core.password_policy import ensure_strong_password
from portal.dependencies.auth import get_current_user
from portal.dependencies.services import get_auth_service
from portal.models.user import User
from portal.schemas.user import ChangePasswordIn, RevokedSessionsOut
from portal.services.auth import AuthService

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/me/change-password", response_model=RevokedSessionsOut)
def change_password(
    payload: ChangePasswordIn,
    response: Response,
    current_user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    ensure_strong_password(payload.new_password, email=current_user.email)

    revoked = auth.change_password(current_user.id, payload.current_password, payload.new_password)
    # Every session (this one included) is gone; the client signs in again.
    clear_auth_cookies(response)
    return {"revoked": revoked}

