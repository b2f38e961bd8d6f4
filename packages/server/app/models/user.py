"""User model."""

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class User(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (
        sa.CheckConstraint(
            "length(username) >= 3 AND length(username) <= 30",
            name="chk_username_length",
        ),
    )

    email: str = Field(unique=True, index=True, nullable=False, max_length=255)
    username: str = Field(unique=True, index=True, nullable=False, max_length=30)
    password_hash: str = Field(nullable=False)  # bcrypt
    email_verified: bool = Field(default=False, nullable=False)
