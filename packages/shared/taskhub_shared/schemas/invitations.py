"""Invitation schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, UUID4

from .common import AssignableRole, InvitationStatus


class InvitationCreateRequest(BaseModel):
    email: EmailStr
    role: AssignableRole = AssignableRole.MEMBER


class InvitationResponse(BaseModel):
    """Invitation as seen by organization managers."""
    id: UUID4
    email: str
    role: AssignableRole
    status: InvitationStatus
    invited_by: UUID4
    inviter_name: Optional[str] = None
    inviter_email: Optional[str] = None
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: datetime


class InvitationListResponse(BaseModel):
    data: List[InvitationResponse]


class InvitationPublic(BaseModel):
    """What anyone holding the token may see. No ids, no inviter email."""
    organization_name: str
    inviter_name: str
    role: AssignableRole
    expires_at: datetime
    is_expired: bool
    status: InvitationStatus


class InvitationAcceptResponse(BaseModel):
    success: bool = True
    organization_id: UUID4
    organization_name: str
