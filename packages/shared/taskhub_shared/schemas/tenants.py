"""Admin tenant and API key schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, UUID4

from .organizations import OrganizationResponse


class TenantCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$")


class TenantUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    is_active: Optional[bool] = None


class TenantListResponse(BaseModel):
    data: List[OrganizationResponse]


class ApiKeyCreateRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    expires_at: Optional[datetime] = None
    user_id: Optional[UUID4] = None


class ApiKeyResponse(BaseModel):
    """Stored key metadata. Never includes the key or its digest."""
    id: UUID4
    tenant_id: UUID4
    user_id: Optional[UUID4] = None
    name: Optional[str] = None
    is_active: bool
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime


class ApiKeyCreatedResponse(BaseModel):
    """The raw key is shown exactly once."""
    api_key: str
    record: ApiKeyResponse


class TenantCreatedResponse(BaseModel):
    tenant: OrganizationResponse
    api_key: str


class TenantDetailResponse(BaseModel):
    tenant: OrganizationResponse
    api_keys: List[ApiKeyResponse]


class TenantStats(BaseModel):
    todos_total: int
    todos_pending: int
    todos_completed: int
    tags: int
    active_api_keys: int
