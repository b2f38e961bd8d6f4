"""User-Tenant membership (join table)."""

from datetime import datetime
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


class UserTenant(UUIDMixin, SQLModel, table=True):
    __tablename__ = "user_tenants"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "tenant_id", name="uq_user_tenants_user_tenant"),
        sa.CheckConstraint("role IN ('owner', 'admin', 'member')", name="chk_user_tenants_role"),
    )

    user_id: uuid.UUID = Field(foreign_key="users.id", ondelete="CASCADE", nullable=False, index=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", ondelete="CASCADE", nullable=False, index=True)
    role: str = Field(nullable=False, default="member")  # owner | admin | member
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
