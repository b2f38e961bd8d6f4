"""
Invitation service.

An invitation starts ``pending`` and moves exactly once to ``accepted``,
``declined`` or ``revoked``. Every transition is a conditional update on
``status = 'pending'`` so two concurrent transitions cannot both succeed.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import select

from app.core import email
from app.core.config import get_settings
from app.core.errors import Conflict, Expired, Forbidden, NotFound
from app.models.base import ensure_utc, utcnow
from app.models.invitation import Invitation
from app.models.membership import UserTenant
from app.models.tenant import Tenant
from app.models.user import User
from app.services import memberships as membership_service

from taskhub_shared.schemas.common import MANAGER_ROLES, AssignableRole, InvitationStatus
from taskhub_shared.schemas.invitations import InvitationPublic, InvitationResponse

log = structlog.get_logger()

INVITATION_EXPIRY_DAYS = 7


def is_expired(invitation: Invitation) -> bool:
    return utcnow() > ensure_utc(invitation.expires_at)


async def _require_manager(
    actor_id: uuid.UUID, tenant_id: uuid.UUID, session: AsyncSession, action: str
) -> None:
    role = await membership_service.get_role(actor_id, tenant_id, session)
    if role not in MANAGER_ROLES:
        raise Forbidden(f"Only organization owners and admins can {action}")


async def create_invitation(
    actor: User,
    tenant_id: uuid.UUID,
    address: str,
    role: AssignableRole,
    session: AsyncSession,
) -> Invitation:
    await _require_manager(actor.id, tenant_id, session, "send invitations")
    address = address.lower()

    pending = await session.execute(
        select(Invitation.id)
        .where(Invitation.tenant_id == tenant_id)
        .where(Invitation.email == address)
        .where(Invitation.status == InvitationStatus.PENDING.value)
    )
    if pending.first() is not None:
        raise Conflict("A pending invitation already exists for this email")

    member = await session.execute(
        select(UserTenant.id)
        .join(User, User.id == UserTenant.user_id)
        .where(UserTenant.tenant_id == tenant_id)
        .where(User.email == address)
    )
    if member.first() is not None:
        raise Conflict("This user is already a member of the organization")

    invitation = Invitation(
        tenant_id=tenant_id,
        email=address,
        role=AssignableRole(role).value,
        invited_by=actor.id,
        expires_at=utcnow() + timedelta(days=INVITATION_EXPIRY_DAYS),
    )
    session.add(invitation)
    try:
        await session.flush()
    except IntegrityError:
        raise Conflict("A pending invitation already exists for this email")

    log.info(
        "invitation.created",
        invitation_id=str(invitation.id),
        tenant_id=str(tenant_id),
        invited_by=str(actor.id),
    )
    return invitation


def send_invitation_email(invitation: Invitation, inviter: User, organization_name: str) -> None:
    """Schedule the invitation email. Call only after the invitation is committed."""
    email.send_in_background(
        invitation.email,
        "invitation",
        inviter_name=inviter.username,
        organization_name=organization_name,
        role=invitation.role,
        invite_url=f"{get_settings().app_url}/invitations/{invitation.token}",
    )


async def list_invitations(
    actor_id: uuid.UUID, tenant_id: uuid.UUID, session: AsyncSession
) -> list[InvitationResponse]:
    await _require_manager(actor_id, tenant_id, session, "view invitations")
    result = await session.execute(
        select(Invitation, User)
        .join(User, User.id == Invitation.invited_by)
        .where(Invitation.tenant_id == tenant_id)
        .order_by(Invitation.created_at.desc())
    )
    return [
        InvitationResponse(
            id=inv.id,
            email=inv.email,
            role=inv.role,
            status=inv.status,
            invited_by=inv.invited_by,
            inviter_name=inviter.username,
            inviter_email=inviter.email,
            expires_at=ensure_utc(inv.expires_at),
            accepted_at=ensure_utc(inv.accepted_at),
            created_at=ensure_utc(inv.created_at),
        )
        for inv, inviter in result.all()
    ]


async def revoke_invitation(
    actor_id: uuid.UUID, tenant_id: uuid.UUID, invitation_id: uuid.UUID, session: AsyncSession
) -> None:
    await _require_manager(actor_id, tenant_id, session, "revoke invitations")
    result = await session.execute(
        update(Invitation)
        .where(Invitation.id == invitation_id)
        .where(Invitation.tenant_id == tenant_id)
        .where(Invitation.status == InvitationStatus.PENDING.value)
        .values(status=InvitationStatus.REVOKED.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound("Invitation not found or cannot be revoked")
    log.info("invitation.revoked", invitation_id=str(invitation_id), revoked_by=str(actor_id))


async def get_invitation_by_token(token: str, session: AsyncSession) -> Optional[InvitationPublic]:
    """Public view of an invitation for whoever holds the token."""
    result = await session.execute(
        select(Invitation, Tenant.name, User.username)
        .join(Tenant, Tenant.id == Invitation.tenant_id)
        .join(User, User.id == Invitation.invited_by)
        .where(Invitation.token == token)
    )
    row = result.first()
    if row is None:
        return None
    invitation, organization_name, inviter_name = row
    return InvitationPublic(
        organization_name=organization_name,
        inviter_name=inviter_name,
        role=invitation.role,
        expires_at=ensure_utc(invitation.expires_at),
        is_expired=is_expired(invitation),
        status=invitation.status,
    )


async def _load_for_transition(user: User, token: str, session: AsyncSession) -> Invitation:
    result = await session.execute(
        select(Invitation).where(Invitation.token == token).with_for_update()
    )
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise NotFound("Invitation not found")
    if invitation.status != InvitationStatus.PENDING.value:
        raise Conflict(f"This invitation has already been {invitation.status}")
    if is_expired(invitation):
        raise Expired("This invitation has expired")
    if invitation.email != user.email.lower():
        raise Forbidden("This invitation was sent to a different email address")
    return invitation


async def _transition(
    invitation: Invitation, status: InvitationStatus, session: AsyncSession, **values
) -> None:
    result = await session.execute(
        update(Invitation)
        .where(Invitation.id == invitation.id)
        .where(Invitation.status == InvitationStatus.PENDING.value)
        .values(status=status.value, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await session.refresh(invitation)
        raise Conflict(f"This invitation has already been {invitation.status}")
    set_committed_value(invitation, "status", status.value)
    for key, value in values.items():
        set_committed_value(invitation, key, value)


@dataclass
class Acceptance:
    tenant: Tenant
    inviter: Optional[User]


async def accept_invitation(user: User, token: str, session: AsyncSession) -> Acceptance:
    """Join the inviting organization. Caller commits, then calls ``send_acceptance_email``."""
    invitation = await _load_for_transition(user, token, session)

    if await membership_service.get_membership(user.id, invitation.tenant_id, session) is not None:
        raise Conflict("You are already a member of this organization")

    await _transition(invitation, InvitationStatus.ACCEPTED, session, accepted_at=utcnow())
    session.add(UserTenant(user_id=user.id, tenant_id=invitation.tenant_id, role=invitation.role))
    try:
        await session.flush()
    except IntegrityError:
        raise Conflict("You are already a member of this organization")

    tenant = await session.get(Tenant, invitation.tenant_id)
    inviter = await session.get(User, invitation.invited_by)
    log.info(
        "invitation.accepted",
        invitation_id=str(invitation.id),
        tenant_id=str(invitation.tenant_id),
        user_id=str(user.id),
    )
    return Acceptance(tenant=tenant, inviter=inviter)


def send_acceptance_email(acceptance: Acceptance, new_member: User) -> None:
    if acceptance.inviter is None:
        return
    email.send_in_background(
        acceptance.inviter.email,
        "invitation_accepted",
        new_member_name=new_member.username,
        organization_name=acceptance.tenant.name,
    )


async def decline_invitation(user: User, token: str, session: AsyncSession) -> None:
    invitation = await _load_for_transition(user, token, session)
    await _transition(invitation, InvitationStatus.DECLINED, session)
    log.info("invitation.declined", invitation_id=str(invitation.id), user_id=str(user.id))
