"""
Tenant service: slugs, organization creation and admin tenant management.
"""

from __future__ import annotations

import re
import uuid
from typing import Optional

import structlog
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import Conflict, NotFound, ValidationFailed
from app.models.api_key import ApiKey
from app.models.base import utcnow
from app.models.membership import UserTenant
from app.models.tenant import Tenant
from app.models.todo import Tag, Todo
from app.services import api_keys as api_key_service

from taskhub_shared.schemas.common import Role, TodoStatus
from taskhub_shared.schemas.tenants import TenantStats, TenantUpdateRequest

log = structlog.get_logger()

SLUG_MAX_LENGTH = 100
_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    slug = _NON_SLUG_CHARS.sub("-", name.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH]


async def generate_unique_slug(name: str, session: AsyncSession) -> str:
    """Slug for ``name``, suffixed ``-1``, ``-2``... until unused."""
    base = slugify(name) or "org"
    counter = 0
    while True:
        candidate = base if counter == 0 else f"{base}-{counter}"
        result = await session.execute(select(Tenant.id).where(Tenant.slug == candidate))
        if result.first() is None:
            return candidate
        counter += 1


async def create_organization(
    user_id: uuid.UUID, name: str, session: AsyncSession
) -> tuple[Tenant, UserTenant]:
    """Create a tenant and make ``user_id`` its owner. Caller commits."""
    tenant = Tenant(name=name, slug=await generate_unique_slug(name, session))
    session.add(tenant)
    await session.flush()

    membership = UserTenant(user_id=user_id, tenant_id=tenant.id, role=Role.OWNER.value)
    session.add(membership)
    await session.flush()

    log.info("org.created", tenant_id=str(tenant.id), slug=tenant.slug, owner_id=str(user_id))
    return tenant, membership


# ---------------------------------------------------------------------------
# Admin operations (system session)
# ---------------------------------------------------------------------------

async def list_tenants(session: AsyncSession) -> list[Tenant]:
    result = await session.execute(select(Tenant).order_by(Tenant.created_at.desc()))
    return list(result.scalars().all())


async def get_tenant(tenant_id: uuid.UUID, session: AsyncSession) -> Tenant:
    tenant = await session.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFound("Tenant not found")
    return tenant


async def create_tenant(
    name: str, slug: Optional[str], session: AsyncSession
) -> tuple[Tenant, str]:
    """Create a tenant with an initial tenant-level API key.

    Returns the tenant and the raw key.
    """
    if slug is None:
        slug = await generate_unique_slug(name, session)
    else:
        existing = await session.execute(select(Tenant.id).where(Tenant.slug == slug))
        if existing.first() is not None:
            raise Conflict("A tenant with this slug already exists")

    tenant = Tenant(name=name, slug=slug)
    session.add(tenant)
    await session.flush()

    raw_key, _ = await api_key_service.create_api_key_for_tenant(
        tenant.id, session, name="Initial API Key"
    )
    log.info("tenant.created", tenant_id=str(tenant.id), slug=tenant.slug)
    return tenant, raw_key


async def update_tenant(
    tenant_id: uuid.UUID, req: TenantUpdateRequest, session: AsyncSession
) -> Tenant:
    if req.name is None and req.is_active is None:
        raise ValidationFailed("No fields to update")

    tenant = await get_tenant(tenant_id, session)
    if req.name is not None:
        tenant.name = req.name
    if req.is_active is not None:
        tenant.is_active = req.is_active
    tenant.updated_at = utcnow()
    session.add(tenant)
    await session.flush()

    log.info("tenant.updated", tenant_id=str(tenant_id), is_active=tenant.is_active)
    return tenant


async def delete_tenant(tenant_id: uuid.UUID, session: AsyncSession) -> None:
    result = await session.execute(
        delete(Tenant).where(Tenant.id == tenant_id).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound("Tenant not found")
    log.info("tenant.deleted", tenant_id=str(tenant_id))


async def tenant_stats(session: AsyncSession) -> TenantStats:
    """Counts for the tenant bound to ``session``."""
    status_counts = await session.execute(
        select(Todo.status, func.count(Todo.id)).group_by(Todo.status)
    )
    by_status = {status: count for status, count in status_counts.all()}
    tags = await session.scalar(select(func.count(Tag.id)))
    keys = await session.scalar(
        select(func.count(ApiKey.id)).where(ApiKey.is_active == True)  # noqa: E712
    )
    return TenantStats(
        todos_total=sum(by_status.values()),
        todos_pending=by_status.get(TodoStatus.PENDING.value, 0),
        todos_completed=by_status.get(TodoStatus.COMPLETED.value, 0),
        tags=tags or 0,
        active_api_keys=keys or 0,
    )
