"""Organization invitation model."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


class Invitation(UUIDMixin, SQLModel, table=True):
    __tablename__ = "organization_invitations"
    __table_args__ = (
        sa.CheckConstraint("role IN ('admin', 'member')", name="chk_invitations_role"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'declined', 'revoked')",
            name="chk_invitations_status",
        ),
        sa.Index(
            "idx_invitations_unique_pending",
            "tenant_id",
            "email",
            unique=True,
            postgresql_where=sa.text("status = 'pending'"),
            sqlite_where=sa.text("status = 'pending'"),
        ),
    )

    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", ondelete="CASCADE", nullable=False, index=True)
    email: str = Field(nullable=False, index=True, max_length=255)
    role: str = Field(nullable=False, default="member")  # admin | member
    token: str = Field(
        default_factory=lambda: str(uuid.uuid4()), unique=True, index=True, nullable=False
    )
    invited_by: uuid.UUID = Field(foreign_key="users.id", ondelete="CASCADE", nullable=False)
    expires_at: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
    status: str = Field(nullable=False, default="pending")
    accepted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
