"""Login session model (cookie-backed, opaque token)."""

from datetime import datetime
from typing import Optional
import secrets
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


class UserSession(UUIDMixin, SQLModel, table=True):
    __tablename__ = "sessions"

    user_id: uuid.UUID = Field(foreign_key="users.id", ondelete="CASCADE", nullable=False, index=True)
    tenant_id: Optional[uuid.UUID] = Field(
        default=None, foreign_key="tenants.id", ondelete="SET NULL", nullable=True
    )
    session_token: str = Field(
        default_factory=new_session_token, unique=True, index=True, nullable=False
    )
    expires_at: datetime = Field(nullable=False, index=True, sa_type=sa.DateTime(timezone=True))
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
