"""
Membership service: who belongs to which organization, and with what role.

Every tenant has exactly one owner. The owner can only change through
``transfer_ownership``, which demotes and promotes in the same transaction.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy import delete, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import Conflict, Forbidden, NotFound, Unauthenticated, ValidationFailed
from app.models.membership import UserTenant
from app.models.tenant import Tenant
from app.models.user import User
from app.services import sessions as session_service

from taskhub_shared.schemas.common import MANAGER_ROLES, AssignableRole, Role

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def list_organizations(
    user_id: uuid.UUID, session: AsyncSession
) -> list[tuple[Tenant, UserTenant]]:
    """Active organizations of ``user_id``, oldest membership first."""
    result = await session.execute(
        select(Tenant, UserTenant)
        .join(UserTenant, UserTenant.tenant_id == Tenant.id)
        .where(UserTenant.user_id == user_id)
        .where(Tenant.is_active == True)  # noqa: E712
        .order_by(UserTenant.created_at.asc(), UserTenant.id.asc())
    )
    return [(tenant, membership) for tenant, membership in result.all()]


async def get_default_organization(
    user_id: uuid.UUID, session: AsyncSession
) -> Optional[Tenant]:
    organizations = await list_organizations(user_id, session)
    return organizations[0][0] if organizations else None


async def get_membership(
    user_id: uuid.UUID, tenant_id: uuid.UUID, session: AsyncSession, *, for_update: bool = False
) -> Optional[UserTenant]:
    stmt = select(UserTenant).where(
        UserTenant.user_id == user_id, UserTenant.tenant_id == tenant_id
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_role(
    user_id: uuid.UUID, tenant_id: uuid.UUID, session: AsyncSession
) -> Optional[Role]:
    """Role of ``user_id`` in an active tenant, ``None`` when not a member."""
    result = await session.execute(
        select(UserTenant.role)
        .join(Tenant, Tenant.id == UserTenant.tenant_id)
        .where(UserTenant.user_id == user_id)
        .where(UserTenant.tenant_id == tenant_id)
        .where(Tenant.is_active == True)  # noqa: E712
    )
    role = result.scalar_one_or_none()
    return Role(role) if role is not None else None


async def is_member(user_id: uuid.UUID, tenant_id: uuid.UUID, session: AsyncSession) -> bool:
    return await get_role(user_id, tenant_id, session) is not None


async def non_members(
    user_ids: list[uuid.UUID], tenant_id: uuid.UUID, session: AsyncSession
) -> list[uuid.UUID]:
    """The subset of ``user_ids`` that does not belong to ``tenant_id``, in input order."""
    if not user_ids:
        return []
    result = await session.execute(
        select(UserTenant.user_id)
        .where(UserTenant.tenant_id == tenant_id)
        .where(UserTenant.user_id.in_(user_ids))
    )
    members = set(result.scalars().all())
    return [user_id for user_id in user_ids if user_id not in members]



async def _require_manager(
    actor_id: uuid.UUID, tenant_id: uuid.UUID, session: AsyncSession, action: str
) -> Role:
    role = await get_role(actor_id, tenant_id, session)
    if role not in MANAGER_ROLES:
        raise Forbidden(f"Only owners and admins can {action}")
    return role


async def list_members(
    actor_id: uuid.UUID,
    tenant_id: uuid.UUID,
    session: AsyncSession,
    search: Optional[str] = None,
) -> list[tuple[User, UserTenant]]:
    """Members of the tenant sorted by username. Only visible to members."""
    if not await is_member(actor_id, tenant_id, session):
        raise Forbidden("You do not have access to this organization")

    stmt = (
        select(User, UserTenant)
        .join(UserTenant, UserTenant.user_id == User.id)
        .where(UserTenant.tenant_id == tenant_id)
    )
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(func.lower(User.username).like(pattern), func.lower(User.email).like(pattern))
        )
    result = await session.execute(stmt.order_by(func.lower(User.username)))
    return [(user, membership) for user, membership in result.all()]


# ---------------------------------------------------------------------------
# Mutations (caller commits)
# ---------------------------------------------------------------------------

async def add_member(
    user_id: uuid.UUID, tenant_id: uuid.UUID, role: AssignableRole, session: AsyncSession
) -> UserTenant:
    if await get_membership(user_id, tenant_id, session) is not None:
        raise Conflict("User is already a member of this organization")

    membership = UserTenant(user_id=user_id, tenant_id=tenant_id, role=AssignableRole(role).value)
    session.add(membership)
    try:
        await session.flush()
    except IntegrityError:
        raise Conflict("User is already a member of this organization")

    log.info("membership.added", user_id=str(user_id), tenant_id=str(tenant_id), role=membership.role)
    return membership


async def remove_member(
    actor_id: uuid.UUID, tenant_id: uuid.UUID, target_id: uuid.UUID, session: AsyncSession
) -> None:
    await _require_manager(actor_id, tenant_id, session, "remove members")

    target = await get_membership(target_id, tenant_id, session)
    if target is None:
        raise NotFound("Member not found")
    if target.role == Role.OWNER.value:
        raise Forbidden("Cannot remove the organization owner")

    await session.execute(
        delete(UserTenant)
        .where(UserTenant.id == target.id)
        .execution_options(synchronize_session=False)
    )
    fallback = await get_default_organization(target_id, session)
    await session_service.move_user_sessions(
        target_id, tenant_id, fallback.id if fallback else None, session
    )
    log.info(
        "membership.removed",
        tenant_id=str(tenant_id),
        user_id=str(target_id),
        removed_by=str(actor_id),
    )


async def update_role(
    actor_id: uuid.UUID,
    tenant_id: uuid.UUID,
    target_id: uuid.UUID,
    new_role: AssignableRole,
    session: AsyncSession,
) -> UserTenant:
    await _require_manager(actor_id, tenant_id, session, "change member roles")

    target = await get_membership(target_id, tenant_id, session)
    if target is None:
        raise NotFound("Member not found")
    if target.role == Role.OWNER.value:
        raise Forbidden("Cannot change the owner's role")

    target.role = AssignableRole(new_role).value
    session.add(target)
    await session.flush()

    log.info(
        "membership.role_updated",
        tenant_id=str(tenant_id),
        user_id=str(target_id),
        role=target.role,
        updated_by=str(actor_id),
    )
    return target


async def transfer_ownership(
    actor_id: uuid.UUID, tenant_id: uuid.UUID, new_owner_id: uuid.UUID, session: AsyncSession
) -> None:
    """Demote the current owner to admin and promote ``new_owner_id``."""
    current = await get_membership(actor_id, tenant_id, session, for_update=True)
    if current is None or current.role != Role.OWNER.value:
        raise Forbidden("Only the owner can transfer ownership")
    if new_owner_id == actor_id:
        raise ValidationFailed("You already own this organization")

    target = await get_membership(new_owner_id, tenant_id, session, for_update=True)
    if target is None:
        raise NotFound("The new owner must be a member of this organization")

    current.role = Role.ADMIN.value
    target.role = Role.OWNER.value
    session.add_all([current, target])
    await session.flush()

    log.info(
        "membership.ownership_transferred",
        tenant_id=str(tenant_id),
        from_user_id=str(actor_id),
        to_user_id=str(new_owner_id),
    )


async def leave_organization(
    user_id: uuid.UUID,
    tenant_id: uuid.UUID,
    active_tenant_id: Optional[uuid.UUID],
    session: AsyncSession,
) -> Optional[Tenant]:
    """Leave ``tenant_id``. Returns the caller's active organization afterwards.

    Every session of the user that pointed at ``tenant_id`` moves to the
    oldest remaining membership, or to no organization.
    """
    membership = await get_membership(user_id, tenant_id, session)
    if membership is None:
        raise NotFound("You are not a member of this organization")
    if membership.role == Role.OWNER.value:
        raise Forbidden("The organization owner cannot leave. Transfer ownership first.")

    await session.execute(
        delete(UserTenant)
        .where(UserTenant.id == membership.id)
        .execution_options(synchronize_session=False)
    )
    log.info("membership.left", tenant_id=str(tenant_id), user_id=str(user_id))

    fallback = await get_default_organization(user_id, session)
    await session_service.move_user_sessions(
        user_id, tenant_id, fallback.id if fallback else None, session
    )

    if active_tenant_id != tenant_id:
        return await session.get(Tenant, active_tenant_id) if active_tenant_id else None
    return fallback


async def switch_organization(
    user_id: uuid.UUID, session_token: str, tenant_id: uuid.UUID, session: AsyncSession
) -> Tenant:
    if not await is_member(user_id, tenant_id, session):
        raise Forbidden("You do not have access to this organization")

    if await session_service.reassign_session_tenant(session_token, tenant_id, session) is None:
        raise Unauthenticated("Invalid or expired session")

    tenant = await session.get(Tenant, tenant_id)
    log.info("org.switched", user_id=str(user_id), tenant_id=str(tenant_id))
    return tenant
