from __future__ import annotations

from datetime import datetime

from pydantic import EmailStr, Field

from crm_api.core.schemas import CamelModel


class RegisterRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=256)
    first_name: str = Field(min_length=1, max_length=128)
    last_name: str = Field(default="", max_length=128)
    role: str = "SALES_REP"
    phone_number: str | None = Field(default=None, max_length=32)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RefreshRequest(CamelModel):
    refresh_token: str = Field(min_length=1)


class ProfileUpdate(CamelModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=128)
    last_name: str | None = Field(default=None, max_length=128)
    phone_number: str | None = Field(default=None, max_length=32)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=8, max_length=256)


class UserCreate(CamelModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=256)
    username: str | None = Field(default=None, max_length=256)
    first_name: str = Field(default="", max_length=128)
    last_name: str = Field(default="", max_length=128)
    role: str = "SALES_REP"
    phone_number: str | None = Field(default=None, max_length=32)


class UserUpdate(CamelModel):
    first_name: str | None = Field(default=None, max_length=128)
    last_name: str | None = Field(default=None, max_length=128)
    username: str | None = Field(default=None, max_length=256)
    phone_number: str | None = Field(default=None, max_length=32)
    role: str | None = None
    password: str | None = Field(default=None, min_length=8, max_length=256)


class UserRead(CamelModel):
    user_id: str
    email: str
    first_name: str
    last_name: str
    username: str | None = None
    role: str
    tenant_id: str
    phone_number: str | None = None
    permissions: list[str] = Field(default_factory=list)
    is_deleted: bool = False
    created_by: str
    created_at: datetime
    updated_at: datetime


class TokenPairRead(CamelModel):
    access_token: str
    refresh_token: str


class AuthResponse(TokenPairRead):
    user: UserRead
