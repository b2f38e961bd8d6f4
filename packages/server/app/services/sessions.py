"""
Session service: cookie-backed login sessions with opaque tokens.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import and_, delete, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.models.base import utcnow
from app.models.membership import UserTenant
from app.models.session import UserSession
from app.models.tenant import Tenant
from app.models.user import User

log = structlog.get_logger()


@dataclass
class SessionAuth:
    session: UserSession
    user: User
    tenant: Optional[Tenant]


async def validate_session(token: str, session: AsyncSession) -> Optional[SessionAuth]:
    """Resolve a non-expired session token to its session, user and tenant.

    Unknown, expired and malformed tokens all take the same path and yield
    ``None``. The tenant is only returned while the user is still a member
    of it.
    """
    result = await session.execute(
        select(UserSession, User, Tenant)
        .join(User, User.id == UserSession.user_id)
        .outerjoin(
            UserTenant,
            and_(
                UserTenant.user_id == UserSession.user_id,
                UserTenant.tenant_id == UserSession.tenant_id,
            ),
        )
        .outerjoin(Tenant, Tenant.id == UserTenant.tenant_id)
        .where(UserSession.session_token == token)
        .where(UserSession.expires_at > utcnow())
    )
    row = result.first()
    if row is None:
        return None
    user_session, user, tenant = row
    return SessionAuth(session=user_session, user=user, tenant=tenant)


async def create_session(
    user_id: uuid.UUID,
    tenant_id: Optional[uuid.UUID],
    session: AsyncSession,
) -> UserSession:
    settings = get_settings()
    user_session = UserSession(
        user_id=user_id,
        tenant_id=tenant_id,
        expires_at=utcnow() + timedelta(days=settings.session_duration_days),
    )
    session.add(user_session)
    await session.flush()

    log.info(
        "session.created",
        session_id=str(user_session.id),
        user_id=str(user_id),
        tenant_id=str(tenant_id) if tenant_id else None,
    )
    return user_session


async def reassign_session_tenant(
    token: str, tenant_id: Optional[uuid.UUID], session: AsyncSession
) -> Optional[UserSession]:
    """Point a live session at another tenant. Membership is the caller's job."""
    result = await session.execute(
        update(UserSession)
        .where(UserSession.session_token == token)
        .where(UserSession.expires_at > utcnow())
        .values(tenant_id=tenant_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None

    refreshed = await session.execute(
        select(UserSession)
        .where(UserSession.session_token == token)
        .execution_options(populate_existing=True)
    )
    user_session = refreshed.scalar_one()
    log.info(
        "session.tenant_reassigned",
        session_id=str(user_session.id),
        tenant_id=str(tenant_id) if tenant_id else None,
    )
    return user_session


async def move_user_sessions(
    user_id: uuid.UUID,
    from_tenant_id: uuid.UUID,
    to_tenant_id: Optional[uuid.UUID],
    session: AsyncSession,
) -> int:
    """Point every session ``user_id`` has on ``from_tenant_id`` elsewhere.

    Used when a membership ends, so no session keeps a tenant its user has
    left.
    """
    result = await session.execute(
        update(UserSession)
        .where(UserSession.user_id == user_id)
        .where(UserSession.tenant_id == from_tenant_id)
        .values(tenant_id=to_tenant_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        log.info(
            "session.tenant_detached",
            user_id=str(user_id),
            from_tenant_id=str(from_tenant_id),
            to_tenant_id=str(to_tenant_id) if to_tenant_id else None,
            count=result.rowcount,
        )
    return result.rowcount


async def delete_session(token: str, session: AsyncSession) -> None:
    await session.execute(
        delete(UserSession)
        .where(UserSession.session_token == token)
        .execution_options(synchronize_session=False)
    )


async def delete_all_user_sessions(user_id: uuid.UUID, session: AsyncSession) -> int:
    result = await session.execute(
        delete(UserSession)
        .where(UserSession.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    log.info("session.revoked_all", user_id=str(user_id), count=result.rowcount)
    return result.rowcount


async def purge_expired_sessions(session: AsyncSession) -> int:
    result = await session.execute(
        delete(UserSession)
        .where(UserSession.expires_at <= utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
