# portal/schemas/user.py
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from portal.core.roles import Role


class UserOut(BaseModel):
    id: str
    email: str
    name: str
    role: Role
    suspended: bool
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ChangePasswordIn(BaseModel):
    # Optional only for accounts that have never set a password (OAuth sign-ups).
    current_password: str | None = Field(default=None, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


class SessionOut(BaseModel):
    id: str
    created_at: datetime
    expires_at: datetime
    current: bool

    model_config = ConfigDict(from_attributes=True)


class RevokedSessionsOut(BaseModel):
    revoked: int


class AdminCreateUserIn(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=128)
    role: Role


class RoleChangeIn(BaseModel):
    role: Role


class AdminUserActionOut(BaseModel):
    user: UserOut
    revoked_sessions: int = 0
