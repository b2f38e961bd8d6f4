"""
Tenant administration (admin key) and tenant-key endpoints.

Admin routes run on system sessions and see every tenant. ``GET /tenant``
accepts any valid API key, including keys without a user.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.responses import api_key_response, organization_response
from app.core.auth import AuthorizationContext, get_tenant_key_db, require_admin, require_tenant_key
from app.core.database import get_system_session
from app.core.errors import ValidationFailed
from app.core.isolation import tenant_session
from app.services import api_keys as api_key_service
from app.services import memberships as membership_service
from app.services import tenants as tenant_service

from taskhub_shared.schemas.common import SuccessResponse
from taskhub_shared.schemas.organizations import OrganizationResponse
from taskhub_shared.schemas.tenants import (
    ApiKeyCreatedResponse,
    ApiKeyCreateRequest,
    TenantCreatedResponse,
    TenantCreateRequest,
    TenantDetailResponse,
    TenantListResponse,
    TenantStats,
    TenantUpdateRequest,
)

log = structlog.get_logger()
admin_router = APIRouter(dependencies=[Depends(require_admin)])
tenant_router = APIRouter()


@admin_router.get("", response_model=TenantListResponse)
async def list_tenants(session: AsyncSession = Depends(get_system_session)):
    tenants = await tenant_service.list_tenants(session)
    return TenantListResponse(data=[organization_response(t) for t in tenants])


@admin_router.post("", response_model=TenantCreatedResponse, status_code=201)
async def create_tenant(
    body: TenantCreateRequest,
    session: AsyncSession = Depends(get_system_session),
):
    tenant, raw_key = await tenant_service.create_tenant(body.name, body.slug, session)
    await session.commit()
    return TenantCreatedResponse(tenant=organization_response(tenant), api_key=raw_key)


@admin_router.get("/{tenant_id}", response_model=TenantDetailResponse)
async def get_tenant(
    tenant_id: uuid.UUID,
    session: AsyncSession = Depends(get_system_session),
):
    tenant = await tenant_service.get_tenant(tenant_id, session)
    keys = await api_key_service.list_api_keys(tenant_id, session)
    return TenantDetailResponse(
        tenant=organization_response(tenant),
        api_keys=[api_key_response(k) for k in keys],
    )


@admin_router.patch("/{tenant_id}", response_model=OrganizationResponse)
async def update_tenant(
    tenant_id: uuid.UUID,
    body: TenantUpdateRequest,
    session: AsyncSession = Depends(get_system_session),
):
    tenant = await tenant_service.update_tenant(tenant_id, body, session)
    await session.commit()
    return organization_response(tenant)


@admin_router.delete("/{tenant_id}", response_model=SuccessResponse)
async def delete_tenant(
    tenant_id: uuid.UUID,
    session: AsyncSession = Depends(get_system_session),
):
    await tenant_service.delete_tenant(tenant_id, session)
    await session.commit()
    return SuccessResponse()


@admin_router.get("/{tenant_id}/stats", response_model=TenantStats)
async def tenant_stats(
    tenant_id: uuid.UUID,
    session: AsyncSession = Depends(get_system_session),
):
    await tenant_service.get_tenant(tenant_id, session)
    async with tenant_session(tenant_id) as scoped:
        return await tenant_service.tenant_stats(scoped)


@admin_router.post("/{tenant_id}/api-keys", response_model=ApiKeyCreatedResponse, status_code=201)
async def create_api_key(
    tenant_id: uuid.UUID,
    body: ApiKeyCreateRequest,
    session: AsyncSession = Depends(get_system_session),
):
    await tenant_service.get_tenant(tenant_id, session)
    if body.user_id is not None and await membership_service.get_membership(
        body.user_id, tenant_id, session
    ) is None:
        raise ValidationFailed("User is not a member of this tenant")

    raw_key, record = await api_key_service.create_api_key_for_tenant(
        tenant_id,
        session,
        name=body.name,
        expires_at=body.expires_at,
        user_id=body.user_id,
    )
    await session.commit()
    return ApiKeyCreatedResponse(api_key=raw_key, record=api_key_response(record))


@admin_router.post("/{tenant_id}/api-keys/{api_key_id}/revoke", response_model=SuccessResponse)
async def revoke_api_key(
    tenant_id: uuid.UUID,
    api_key_id: uuid.UUID,
    session: AsyncSession = Depends(get_system_session),
):
    await api_key_service.revoke_api_key(tenant_id, api_key_id, session)
    await session.commit()
    return SuccessResponse()


@tenant_router.get("", response_model=OrganizationResponse)
async def current_tenant(ctx: AuthorizationContext = Depends(require_tenant_key)):
    return organization_response(ctx.tenant)


@tenant_router.get("/stats", response_model=TenantStats)
async def current_tenant_stats(session: AsyncSession = Depends(get_tenant_key_db)):
    return await tenant_service.tenant_stats(session)
