"""
Organization endpoints.

GET  /api/v1/organizations           List the caller's organizations
POST /api/v1/organizations           Create an organization (caller becomes owner)
POST /api/v1/organizations/switch    Make another organization active (session only)
GET  /api/v1/organizations/current   Active organization and role (session only)
POST /api/v1/organizations/leave     Leave the active organization (session only)
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.responses import organization_response
from app.core.auth import AuthorizationContext, require_session, require_user
from app.core.database import get_session
from app.core.errors import ValidationFailed
from app.models.base import ensure_utc
from app.services import memberships as membership_service
from app.services import tenants as tenant_service

from taskhub_shared.schemas.organizations import (
    CurrentOrganizationResponse,
    LeaveOrganizationResponse,
    OrganizationCreateRequest,
    OrganizationListResponse,
    OrganizationMembership,
    OrganizationResponse,
    OrganizationSwitchRequest,
)

log = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=OrganizationListResponse)
async def list_organizations(
    ctx: AuthorizationContext = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    rows = await membership_service.list_organizations(ctx.user.id, session)
    return OrganizationListResponse(
        data=[
            OrganizationMembership(
                id=tenant.id,
                name=tenant.name,
                slug=tenant.slug,
                role=membership.role,
                joined_at=ensure_utc(membership.created_at),
            )
            for tenant, membership in rows
        ]
    )


@router.post("", response_model=OrganizationResponse, status_code=201)
async def create_organization(
    body: OrganizationCreateRequest,
    ctx: AuthorizationContext = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    tenant, _ = await tenant_service.create_organization(ctx.user.id, body.name, session)
    await session.commit()
    return organization_response(tenant)


@router.post("/switch", response_model=OrganizationResponse)
async def switch_organization(
    body: OrganizationSwitchRequest,
    ctx: AuthorizationContext = Depends(require_session),
    session: AsyncSession = Depends(get_session),
):
    tenant = await membership_service.switch_organization(
        ctx.user.id, ctx.session.session_token, body.tenant_id, session
    )
    await session.commit()
    return organization_response(tenant)


@router.get("/current", response_model=CurrentOrganizationResponse)
async def current_organization(
    ctx: AuthorizationContext = Depends(require_session),
    session: AsyncSession = Depends(get_session),
):
    role = None
    if ctx.tenant is not None:
        role = await membership_service.get_role(ctx.user.id, ctx.tenant.id, session)
    return CurrentOrganizationResponse(organization=organization_response(ctx.tenant), role=role)


@router.post("/leave", response_model=LeaveOrganizationResponse)
async def leave_organization(
    ctx: AuthorizationContext = Depends(require_session),
    session: AsyncSession = Depends(get_session),
):
    if ctx.tenant is None:
        raise ValidationFailed("No organization context. Please select an organization.")
    active = await membership_service.leave_organization(
        ctx.user.id,
        ctx.tenant.id,
        ctx.session.tenant_id,
        session,
    )
    await session.commit()
    return LeaveOrganizationResponse(active_organization=organization_response(active))
