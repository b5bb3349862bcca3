# portal/schemas/auth.py
from pydantic import BaseModel, EmailStr, Field

from portal.core.roles import Role
from portal.schemas.user import UserOut


class RegisterIn(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=128)
    role: Role = Role.STUDENT


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class LoginOut(TokenOut):
    user: UserOut
