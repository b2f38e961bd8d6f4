"""
Invitation endpoints.

POST /api/v1/invitations                       Invite an email address (owner/admin)
GET  /api/v1/invitations                       List invitations of the active organization
POST /api/v1/invitations/{id}/revoke           Revoke a pending invitation
GET  /api/v1/invitations/token/{token}         Public invitation details
POST /api/v1/invitations/token/{token}/accept  Join the organization
POST /api/v1/invitations/token/{token}/decline Decline the invitation
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthorizationContext, require_tenant_context, require_user
from app.core.database import get_session, get_system_session
from app.core.errors import NotFound
from app.models.base import ensure_utc
from app.services import invitations as invitation_service

from taskhub_shared.schemas.common import SuccessResponse
from taskhub_shared.schemas.invitations import (
    InvitationAcceptResponse,
    InvitationCreateRequest,
    InvitationListResponse,
    InvitationPublic,
    InvitationResponse,
)

router = APIRouter()


@router.post("", response_model=InvitationResponse, status_code=201)
async def create_invitation(
    body: InvitationCreateRequest,
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    invitation = await invitation_service.create_invitation(
        ctx.user, ctx.tenant.id, body.email, body.role, session
    )
    await session.commit()
    invitation_service.send_invitation_email(invitation, ctx.user, ctx.tenant.name)
    return InvitationResponse(
        id=invitation.id,
        email=invitation.email,
        role=invitation.role,
        status=invitation.status,
        invited_by=invitation.invited_by,
        inviter_name=ctx.user.username,
        inviter_email=ctx.user.email,
        expires_at=ensure_utc(invitation.expires_at),
        created_at=ensure_utc(invitation.created_at),
    )


@router.get("", response_model=InvitationListResponse)
async def list_invitations(
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    items = await invitation_service.list_invitations(ctx.user.id, ctx.tenant.id, session)
    return InvitationListResponse(data=items)


@router.post("/{invitation_id}/revoke", response_model=SuccessResponse)
async def revoke_invitation(
    invitation_id: uuid.UUID,
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    await invitation_service.revoke_invitation(ctx.user.id, ctx.tenant.id, invitation_id, session)
    await session.commit()
    return SuccessResponse()


@router.get("/token/{token}", response_model=InvitationPublic)
async def get_invitation_by_token(
    token: str,
    session: AsyncSession = Depends(get_system_session),
):
    invitation = await invitation_service.get_invitation_by_token(token, session)
    if invitation is None:
        raise NotFound("Invitation not found")
    return invitation


@router.post("/token/{token}/accept", response_model=InvitationAcceptResponse)
async def accept_invitation(
    token: str,
    ctx: AuthorizationContext = Depends(require_user),
    session: AsyncSession = Depends(get_system_session),
):
    acceptance = await invitation_service.accept_invitation(ctx.user, token, session)
    await session.commit()
    invitation_service.send_acceptance_email(acceptance, ctx.user)
    return InvitationAcceptResponse(
        organization_id=acceptance.tenant.id, organization_name=acceptance.tenant.name
    )


@router.post("/token/{token}/decline", response_model=SuccessResponse)
async def decline_invitation(
    token: str,
    ctx: AuthorizationContext = Depends(require_user),
    session: AsyncSession = Depends(get_system_session),
):
    await invitation_service.decline_invitation(ctx.user, token, session)
    await session.commit()
    return SuccessResponse()
