"""Organization (tenant) schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, UUID4

from .common import Role


class OrganizationCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class OrganizationSwitchRequest(BaseModel):
    tenant_id: UUID4


class OrganizationResponse(BaseModel):
    id: UUID4
    name: str
    slug: str
    is_active: bool
    created_at: datetime


class OrganizationMembership(BaseModel):
    """An organization as seen by one of its members."""
    id: UUID4
    name: str
    slug: str
    role: Role
    joined_at: datetime


class OrganizationListResponse(BaseModel):
    data: List[OrganizationMembership]


class CurrentOrganizationResponse(BaseModel):
    organization: Optional[OrganizationResponse] = None
    role: Optional[Role] = None


class LeaveOrganizationResponse(BaseModel):
    success: bool = True
    active_organization: Optional[OrganizationResponse] = None
