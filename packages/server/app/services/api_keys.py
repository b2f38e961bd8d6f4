"""
API key service: generation, provisioning, validation and revocation.

Keys are stored only as bcrypt digests, so validation cannot index on the
key. It scans every active, unexpired key of an active tenant and verifies
each digest until one matches; cost grows linearly with the number of
active keys.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import system_session
from app.core.errors import NotFound
from app.core.security import generate_api_key, get_hasher
from app.models.api_key import ApiKey
from app.models.base import utcnow
from app.models.membership import UserTenant
from app.models.tenant import Tenant
from app.models.user import User

log = structlog.get_logger()


@dataclass
class ApiKeyAuth:
    api_key: ApiKey
    tenant: Tenant
    user: Optional[User]


async def validate_api_key(raw_key: str, session: AsyncSession) -> Optional[ApiKeyAuth]:
    """Match ``raw_key`` against all usable keys. ``session`` must be a system session.

    A key bound to a user stops working once that user leaves the key's tenant.
    """
    result = await session.execute(
        select(ApiKey, Tenant, User)
        .join(Tenant, Tenant.id == ApiKey.tenant_id)
        .outerjoin(User, User.id == ApiKey.user_id)
        .outerjoin(
            UserTenant,
            and_(UserTenant.user_id == ApiKey.user_id, UserTenant.tenant_id == ApiKey.tenant_id),
        )
        .where(or_(ApiKey.user_id.is_(None), UserTenant.id.is_not(None)))
        .where(ApiKey.is_active == True)  # noqa: E712
        .where(Tenant.is_active == True)  # noqa: E712
        .where(or_(ApiKey.expires_at.is_(None), ApiKey.expires_at > utcnow()))
    )
    hasher = get_hasher()
    for api_key, tenant, user in result.all():
        if await hasher.verify(raw_key, api_key.key_hash):
            await touch_last_used(api_key.id)
            return ApiKeyAuth(api_key=api_key, tenant=tenant, user=user)
    return None


async def touch_last_used(api_key_id: uuid.UUID) -> None:
    """Record key usage. Failures are logged and swallowed."""
    try:
        async with system_session() as session:
            await session.execute(
                update(ApiKey)
                .where(ApiKey.id == api_key_id)
                .values(last_used_at=utcnow())
                .execution_options(synchronize_session=False)
            )
    except SQLAlchemyError as exc:
        log.warning("api_key.touch_failed", api_key_id=str(api_key_id), error=str(exc))


async def create_api_key_for_tenant(
    tenant_id: uuid.UUID,
    session: AsyncSession,
    *,
    name: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    user_id: Optional[uuid.UUID] = None,
) -> tuple[str, ApiKey]:
    """Provision a key. The raw key is returned once and never stored."""
    raw_key = generate_api_key()
    record = ApiKey(
        tenant_id=tenant_id,
        user_id=user_id,
        key_hash=await get_hasher().hash(raw_key),
        name=name,
        expires_at=expires_at,
    )
    session.add(record)
    await session.flush()

    log.info(
        "api_key.created",
        api_key_id=str(record.id),
        tenant_id=str(tenant_id),
        user_id=str(user_id) if user_id else None,
    )
    return raw_key, record


async def list_api_keys(tenant_id: uuid.UUID, session: AsyncSession) -> list[ApiKey]:
    result = await session.execute(
        select(ApiKey).where(ApiKey.tenant_id == tenant_id).order_by(ApiKey.created_at.desc())
    )
    return list(result.scalars().all())


async def revoke_api_key(
    tenant_id: uuid.UUID, api_key_id: uuid.UUID, session: AsyncSession
) -> None:
    result = await session.execute(
        update(ApiKey)
        .where(ApiKey.id == api_key_id, ApiKey.tenant_id == tenant_id)
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound("API key not found")
    log.info("api_key.revoked", api_key_id=str(api_key_id), tenant_id=str(tenant_id))
