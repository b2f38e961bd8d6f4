"""
Organization member endpoints. All act on the caller's active organization.

GET    /api/v1/members                       List members (optional ?search=)
POST   /api/v1/members/{user_id}/role        Change a member's role (owner/admin)
DELETE /api/v1/members/{user_id}             Remove a member (owner/admin)
POST   /api/v1/members/transfer-ownership    Hand ownership to another member (owner)
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthorizationContext, require_tenant_context
from app.core.database import get_session
from app.models.user import User
from app.services import memberships as membership_service

from taskhub_shared.schemas.common import SuccessResponse
from taskhub_shared.schemas.members import (
    MemberListResponse,
    MemberResponse,
    MemberRoleUpdateRequest,
    TransferOwnershipRequest,
)

router = APIRouter()


@router.get("", response_model=MemberListResponse)
async def list_members(
    search: Optional[str] = Query(default=None, max_length=100),
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    rows = await membership_service.list_members(ctx.user.id, ctx.tenant.id, session, search)
    return MemberListResponse(
        data=[
            MemberResponse(id=user.id, email=user.email, username=user.username, role=m.role)
            for user, m in rows
        ]
    )


@router.post("/transfer-ownership", response_model=SuccessResponse)
async def transfer_ownership(
    body: TransferOwnershipRequest,
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    await membership_service.transfer_ownership(
        ctx.user.id, ctx.tenant.id, body.new_owner_id, session
    )
    await session.commit()
    return SuccessResponse()


@router.post("/{user_id}/role", response_model=MemberResponse)
async def update_member_role(
    user_id: uuid.UUID,
    body: MemberRoleUpdateRequest,
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    membership = await membership_service.update_role(
        ctx.user.id, ctx.tenant.id, user_id, body.role, session
    )
    await session.commit()
    user = await session.get(User, user_id)
    return MemberResponse(id=user.id, email=user.email, username=user.username, role=membership.role)


@router.delete("/{user_id}", response_model=SuccessResponse)
async def remove_member(
    user_id: uuid.UUID,
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    await membership_service.remove_member(ctx.user.id, ctx.tenant.id, user_id, session)
    await session.commit()
    return SuccessResponse()
