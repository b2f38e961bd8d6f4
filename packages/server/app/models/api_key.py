"""API key model (RLS-scoped)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TenantScopedMixin, UUIDMixin, utcnow


class ApiKey(UUIDMixin, TenantScopedMixin, SQLModel, table=True):
    __tablename__ = "api_keys"

    user_id: Optional[uuid.UUID] = Field(
        default=None, foreign_key="users.id", ondelete="CASCADE", nullable=True, index=True
    )
    key_hash: str = Field(nullable=False)  # bcrypt
    name: Optional[str] = Field(default=None, max_length=255)
    last_used_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
    expires_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    is_active: bool = Field(default=True, nullable=False)
