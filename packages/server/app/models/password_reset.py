"""Single-use password reset token."""

from datetime import datetime
from typing import Optional
import secrets
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


class PasswordResetToken(UUIDMixin, SQLModel, table=True):
    __tablename__ = "password_reset_tokens"

    user_id: uuid.UUID = Field(foreign_key="users.id", ondelete="CASCADE", nullable=False, index=True)
    token: str = Field(
        default_factory=lambda: secrets.token_urlsafe(32), unique=True, index=True, nullable=False
    )
    expires_at: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
    used_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
