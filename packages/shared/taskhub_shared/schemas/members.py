"""Organization member schemas."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, UUID4

from .common import AssignableRole, Role


class MemberResponse(BaseModel):
    id: UUID4
    email: str
    username: str
    role: Role


class MemberListResponse(BaseModel):
    data: List[MemberResponse]


class MemberRoleUpdateRequest(BaseModel):
    role: AssignableRole


class TransferOwnershipRequest(BaseModel):
    new_owner_id: UUID4
