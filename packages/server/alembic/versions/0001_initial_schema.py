"""Initial schema: identity, tenancy, invitations, todos and assignments, with RLS on tenant data.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Tenant-owned tables guarded by the tenant_isolation policy.
RLS_TABLES = ["api_keys", "todos", "tags", "todo_tags", "todo_assignments"]

UUID = postgresql.UUID(as_uuid=True)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
    )


def _tenant_fk() -> sa.Column:
    return sa.Column(
        "tenant_id", UUID, sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # -----------------------------------------------------------------------
    # 1. Identity and tenancy (not RLS-scoped)
    # -----------------------------------------------------------------------

    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(30), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "length(username) >= 3 AND length(username) <= 30", name="chk_username_length"
        ),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "tenants",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)

    op.create_table(
        "user_tenants",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        _tenant_fk(),
        sa.Column("role", sa.Text(), nullable=False, server_default="member"),
        _created_at(),
        sa.UniqueConstraint("user_id", "tenant_id", name="uq_user_tenants_user_tenant"),
        sa.CheckConstraint("role IN ('owner', 'admin', 'member')", name="chk_user_tenants_role"),
    )
    op.create_index("ix_user_tenants_user_id", "user_tenants", ["user_id"])
    op.create_index("ix_user_tenants_tenant_id", "user_tenants", ["tenant_id"])

    op.create_table(
        "sessions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "tenant_id", UUID, sa.ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("session_token", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
    )
    op.create_index("ix_sessions_session_token", "sessions", ["session_token"], unique=True)
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"])
    op.create_index("ix_sessions_expires_at", "sessions", ["expires_at"])

    op.create_table(
        "password_reset_tokens",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_password_reset_tokens_token", "password_reset_tokens", ["token"], unique=True
    )
    op.create_index("ix_password_reset_tokens_user_id", "password_reset_tokens", ["user_id"])

    op.create_table(
        "organization_invitations",
        sa.Column("id", UUID, primary_key=True),
        _tenant_fk(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.Text(), nullable=False, server_default="member"),
        sa.Column("token", sa.Text(), nullable=False),
        sa.Column(
            "invited_by", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint("role IN ('admin', 'member')", name="chk_invitations_role"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'declined', 'revoked')",
            name="chk_invitations_status",
        ),
    )
    op.create_index(
        "ix_organization_invitations_token", "organization_invitations", ["token"], unique=True
    )
    op.create_index(
        "ix_organization_invitations_tenant_id", "organization_invitations", ["tenant_id"]
    )
    op.create_index("ix_organization_invitations_email", "organization_invitations", ["email"])
    op.create_index(
        "idx_invitations_unique_pending",
        "organization_invitations",
        ["tenant_id", "email"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    # -----------------------------------------------------------------------
    # 2. Tenant-owned data (RLS-scoped)
    # -----------------------------------------------------------------------

    op.create_table(
        "api_keys",
        sa.Column("id", UUID, primary_key=True),
        _tenant_fk(),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=True),
        sa.Column("key_hash", sa.Text(), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_api_keys_tenant_id", "api_keys", ["tenant_id"])
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])

    op.create_table(
        "todos",
        sa.Column("id", UUID, primary_key=True),
        _tenant_fk(),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Text(), nullable=False, server_default="medium"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("status IN ('pending', 'completed')", name="chk_todos_status"),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high')", name="chk_todos_priority"),
    )
    op.create_index("ix_todos_tenant_id", "todos", ["tenant_id"])
    op.create_index("idx_todos_tenant_status", "todos", ["tenant_id", "status"])

    op.create_table(
        "tags",
        sa.Column("id", UUID, primary_key=True),
        _tenant_fk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("color", sa.String(7), nullable=True),
        _created_at(),
        sa.UniqueConstraint("tenant_id", "name", name="uq_tags_tenant_name"),
    )
    op.create_index("ix_tags_tenant_id", "tags", ["tenant_id"])

    op.create_table(
        "todo_tags",
        sa.Column(
            "todo_id", UUID, sa.ForeignKey("todos.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column("tag_id", UUID, sa.ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
        _tenant_fk(),
    )
    op.create_index("ix_todo_tags_tag_id", "todo_tags", ["tag_id"])
    op.create_index("ix_todo_tags_tenant_id", "todo_tags", ["tenant_id"])

    op.create_table(
        "todo_assignments",
        sa.Column("id", UUID, primary_key=True),
        _tenant_fk(),
        sa.Column(
            "todo_id", UUID, sa.ForeignKey("todos.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "assigned_by", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "assigned_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint("todo_id", "user_id", name="uq_todo_assignments_todo_user"),
    )
    op.create_index("ix_todo_assignments_tenant_id", "todo_assignments", ["tenant_id"])
    op.create_index("ix_todo_assignments_todo_id", "todo_assignments", ["todo_id"])
    op.create_index("ix_todo_assignments_user_id", "todo_assignments", ["user_id"])

    # -----------------------------------------------------------------------
    # 3. Row Level Security
    # -----------------------------------------------------------------------
    # The application sets app.current_tenant_id per transaction
    # (set_config(..., true)). An unset value matches no rows. System
    # sessions set app.isolation_bypass = 'on' instead.

    predicate = (
        "tenant_id = NULLIF(current_setting('app.current_tenant_id', true), '')::uuid"
        " OR current_setting('app.isolation_bypass', true) = 'on'"
    )
    for table in RLS_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"""
            CREATE POLICY tenant_isolation ON {table}
            USING ({predicate})
            WITH CHECK ({predicate})
        """)
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    for table in reversed(RLS_TABLES):
        op.execute(f"DROP POLICY IF EXISTS tenant_isolation ON {table}")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")

    op.drop_table("todo_assignments")
    op.drop_table("todo_tags")
    op.drop_table("tags")
    op.drop_table("todos")
    op.drop_table("api_keys")
    op.drop_table("organization_invitations")
    op.drop_table("password_reset_tokens")
    op.drop_table("sessions")
    op.drop_table("user_tenants")
    op.drop_table("tenants")
    op.drop_table("users")
