"""Todo, Tag, TodoTag and TodoAssignment models (RLS-scoped)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TenantScopedMixin, TimestampMixin, UUIDMixin, utcnow


class Todo(UUIDMixin, TenantScopedMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "todos"
    __table_args__ = (
        sa.CheckConstraint("status IN ('pending', 'completed')", name="chk_todos_status"),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high')", name="chk_todos_priority"),
        sa.Index("idx_todos_tenant_status", "tenant_id", "status"),
    )

    title: str = Field(nullable=False, max_length=255)
    description: Optional[str] = Field(default=None)
    status: str = Field(default="pending", nullable=False)
    priority: str = Field(default="medium", nullable=False)
    due_date: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))


class Tag(UUIDMixin, TenantScopedMixin, SQLModel, table=True):
    __tablename__ = "tags"
    __table_args__ = (
        sa.UniqueConstraint("tenant_id", "name", name="uq_tags_tenant_name"),
    )

    name: str = Field(nullable=False, max_length=100)
    color: Optional[str] = Field(default=None, max_length=7)
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )


class TodoTag(TenantScopedMixin, SQLModel, table=True):
    __tablename__ = "todo_tags"

    todo_id: uuid.UUID = Field(foreign_key="todos.id", ondelete="CASCADE", primary_key=True)
    tag_id: uuid.UUID = Field(foreign_key="tags.id", ondelete="CASCADE", primary_key=True, index=True)


class TodoAssignment(UUIDMixin, TenantScopedMixin, SQLModel, table=True):
    """A member assigned to a todo. Assignees must belong to the todo's tenant."""

    __tablename__ = "todo_assignments"
    __table_args__ = (
        sa.UniqueConstraint("todo_id", "user_id", name="uq_todo_assignments_todo_user"),
    )

    todo_id: uuid.UUID = Field(foreign_key="todos.id", ondelete="CASCADE", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", ondelete="CASCADE", nullable=False, index=True)
    assigned_by: uuid.UUID = Field(foreign_key="users.id", ondelete="CASCADE", nullable=False)
    assigned_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
