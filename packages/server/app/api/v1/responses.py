"""Builders that turn table rows into API response schemas."""

from __future__ import annotations

from typing import Optional

from app.models.api_key import ApiKey
from app.models.base import ensure_utc
from app.models.tenant import Tenant
from app.models.user import User

from taskhub_shared.schemas.auth import UserPublic
from taskhub_shared.schemas.organizations import OrganizationResponse
from taskhub_shared.schemas.tenants import ApiKeyResponse


def user_public(user: User) -> UserPublic:
    return UserPublic(
        id=user.id,
        email=user.email,
        username=user.username,
        email_verified=user.email_verified,
        created_at=ensure_utc(user.created_at),
        updated_at=ensure_utc(user.updated_at),
    )


def organization_response(tenant: Optional[Tenant]) -> Optional[OrganizationResponse]:
    if tenant is None:
        return None
    return OrganizationResponse(
        id=tenant.id,
        name=tenant.name,
        slug=tenant.slug,
        is_active=tenant.is_active,
        created_at=ensure_utc(tenant.created_at),
    )


def api_key_response(record: ApiKey) -> ApiKeyResponse:
    return ApiKeyResponse(
        id=record.id,
        tenant_id=record.tenant_id,
        user_id=record.user_id,
        name=record.name,
        is_active=record.is_active,
        last_used_at=ensure_utc(record.last_used_at),
        expires_at=ensure_utc(record.expires_at),
        created_at=ensure_utc(record.created_at),
    )
