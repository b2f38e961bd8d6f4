"""
Tenant isolation guard.

The tenant id is bound to an individual ``AsyncSession`` through
``session.info``; nothing about the binding is process-global, so concurrent
requests on pooled connections cannot observe each other's tenant.

Two ORM listeners enforce the policy for every table that uses
``TenantScopedMixin``:

- ``do_orm_execute`` adds ``tenant_id = <bound>`` to SELECT, UPDATE and DELETE
  statements (joins, subqueries and relationship loads included). With no
  tenant bound the criterion matches nothing.
- ``before_flush`` rejects new, modified or deleted rows whose ``tenant_id``
  is not the bound tenant with ``TenantIsolationViolation``.

On PostgreSQL every transaction additionally runs
``set_config('app.current_tenant_id', <id>, true)`` so the native RLS policies
created by the migrations see the same tenant. The setting is transaction
local and disappears with the transaction. System sessions set
``app.isolation_bypass`` instead, which the policies also accept.

System sessions (``app.core.database.system_session``) are exempt.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Optional, TypeVar

import structlog
from sqlalchemy import event, inspect, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria

from app.core.database import ISOLATION_BYPASS_KEY, async_session_factory
from app.core.errors import TenantIsolationViolation
from app.models.base import TenantScopedMixin

log = structlog.get_logger()

TENANT_KEY = "tenant_id"

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Binding
# ---------------------------------------------------------------------------

def bound_tenant(session: Session | AsyncSession) -> Optional[uuid.UUID]:
    """Tenant currently bound to ``session`` (``None`` when unbound)."""
    return session.info.get(TENANT_KEY)


def bind_tenant(session: Session | AsyncSession, tenant_id: uuid.UUID) -> None:
    session.info[TENANT_KEY] = tenant_id


def unbind_tenant(session: Session | AsyncSession) -> None:
    session.info.pop(TENANT_KEY, None)


def _is_exempt(session: Session) -> bool:
    return bool(session.info.get(ISOLATION_BYPASS_KEY))


@asynccontextmanager
async def tenant_session(tenant_id: uuid.UUID) -> AsyncGenerator[AsyncSession, None]:
    """Session bound to ``tenant_id``. The caller decides when to commit.

    Uncommitted work is rolled back when the block exits. The binding is
    cleared on every exit path, cancellation included.
    """
    async with async_session_factory() as session:
        bind_tenant(session, tenant_id)
        try:
            yield session
        finally:
            try:
                await session.rollback()
            finally:
                unbind_tenant(session)


@asynccontextmanager
async def tenant_transaction(tenant_id: uuid.UUID) -> AsyncGenerator[AsyncSession, None]:
    """Session bound to ``tenant_id`` that commits on success, rolls back on error."""
    async with tenant_session(tenant_id) as session:
        yield session
        await session.commit()


async def with_tenant(
    tenant_id: uuid.UUID, fn: Callable[[AsyncSession], Awaitable[T]]
) -> T:
    """Run ``fn(session)`` in a tenant transaction and return its result."""
    async with tenant_transaction(tenant_id) as session:
        return await fn(session)


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

def tenant_scoped_models() -> list[type[TenantScopedMixin]]:
    """Mapped tables that use ``TenantScopedMixin``.

    Criteria are attached per table: the mixin itself is not mapped, so it has
    no ``tenant_id`` column attribute to build a criterion from.
    """
    found: list[type[TenantScopedMixin]] = []
    pending = list(TenantScopedMixin.__subclasses__())
    while pending:
        cls = pending.pop()
        pending.extend(cls.__subclasses__())
        if hasattr(cls, "__table__") and cls not in found:
            found.append(cls)
    return found


@event.listens_for(Session, "do_orm_execute")
def _scope_statement_to_tenant(execute_state: ORMExecuteState) -> None:
    session = execute_state.session
    if _is_exempt(session):
        return
    if not (execute_state.is_select or execute_state.is_update or execute_state.is_delete):
        return
    # Criteria attached to the originating statement already cover these.
    if execute_state.is_column_load or execute_state.is_relationship_load:
        return

    tenant_id = bound_tenant(session)
    if tenant_id is None:
        criteria = [
            with_loader_criteria(model, lambda cls: cls.tenant_id.is_(None), include_aliases=True)
            for model in tenant_scoped_models()
        ]
    else:
        criteria = [
            with_loader_criteria(model, lambda cls: cls.tenant_id == tenant_id, include_aliases=True)
            for model in tenant_scoped_models()
        ]
    execute_state.statement = execute_state.statement.options(*criteria)


@event.listens_for(Session, "before_flush")
def _reject_cross_tenant_writes(session: Session, flush_context, instances) -> None:
    if _is_exempt(session):
        return
    tenant_id = bound_tenant(session)

    for operation, objects in (
        ("insert", session.new),
        ("update", session.dirty),
        ("delete", session.deleted),
    ):
        for obj in objects:
            if not isinstance(obj, TenantScopedMixin):
                continue
            if operation == "update" and not session.is_modified(obj):
                continue
            row_tenants = {obj.tenant_id}
            if operation == "update":
                # a moved row must leave from and arrive in the bound tenant
                row_tenants.update(inspect(obj).attrs.tenant_id.history.deleted)
            if tenant_id is not None and row_tenants == {tenant_id}:
                continue
            row_tenant = next((t for t in row_tenants if t != tenant_id), None)
            log.warning(
                f"isolation.{operation}_rejected",
                table=obj.__tablename__,
                bound_tenant_id=str(tenant_id) if tenant_id else None,
                row_tenant_id=str(row_tenant) if row_tenant else None,
            )
            raise TenantIsolationViolation(
                f"Cannot {operation} {obj.__tablename__} row outside the bound tenant",
                bound_tenant_id=tenant_id,
                row_tenant_id=row_tenant,
            )


@event.listens_for(Session, "after_begin")
def _set_postgres_tenant(session: Session, transaction, connection) -> None:
    if connection.dialect.name != "postgresql":
        return
    if _is_exempt(session):
        connection.execute(text("SELECT set_config('app.isolation_bypass', 'on', true)"))
        return
    tenant_id = bound_tenant(session)
    if tenant_id is None:
        return
    connection.execute(
        text("SELECT set_config('app.current_tenant_id', :tenant_id, true)"),
        {"tenant_id": str(tenant_id)},
    )
