"""Tenant (organization) model. Not RLS-scoped: a tenant is the namespace itself."""

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Tenant(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "tenants"

    name: str = Field(nullable=False, max_length=255)
    slug: str = Field(unique=True, nullable=False, index=True, max_length=100)
    is_active: bool = Field(default=True, nullable=False)
