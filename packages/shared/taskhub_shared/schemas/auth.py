"""Account schemas: signup, signin, password reset."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, UUID4, model_validator

from .common import Role
from .organizations import OrganizationResponse

USERNAME_PATTERN = r"^[A-Za-z0-9_-]+$"


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class SignupRequest(BaseModel):
    email: EmailStr
    username: str = Field(min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=8, max_length=128)
    confirm_password: Optional[str] = None

    @model_validator(mode="after")
    def passwords_match(self) -> "SignupRequest":
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("Passwords don't match")
        return self


class SigninRequest(BaseModel):
    """``identifier`` is either the email address or the username."""
    identifier: str = Field(min_length=1)
    password: str = Field(min_length=1)


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=8, max_length=128)
    confirm_password: Optional[str] = None

    @model_validator(mode="after")
    def passwords_match(self) -> "PasswordResetConfirm":
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("Passwords don't match")
        return self


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class UserPublic(BaseModel):
    """User without credential material."""
    id: UUID4
    email: str
    username: str
    email_verified: bool
    created_at: datetime
    updated_at: datetime


class AuthResponse(BaseModel):
    """Signup/signin result. The token is also set as the session cookie."""
    user: UserPublic
    organization: Optional[OrganizationResponse] = None
    session_token: str


class MeResponse(BaseModel):
    user: UserPublic
    organization: Optional[OrganizationResponse] = None
    role: Optional[Role] = None


class ResetTokenStatus(BaseModel):
    valid: bool
