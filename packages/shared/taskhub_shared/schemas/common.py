from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


# Roles that may manage members and invitations
MANAGER_ROLES: frozenset["Role"] = frozenset({Role.OWNER, Role.ADMIN})


class AssignableRole(str, Enum):
    """Roles that can be granted directly; ownership only moves by transfer."""
    ADMIN = "admin"
    MEMBER = "member"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REVOKED = "revoked"


class TodoStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class TodoPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class SuccessResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
