"""
Todo, assignment and tag endpoints. Every query runs in a session bound to the
caller's active organization, except ``GET /todos/assigned-to-me`` which lists
the caller's assignments across all of their organizations.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthorizationContext, get_tenant_db, require_tenant_context, require_user
from app.core.database import get_system_session
from app.services import todos as todo_service

from taskhub_shared.schemas.common import SuccessResponse, TodoPriority, TodoStatus
from taskhub_shared.schemas.todos import (
    AssignedTodoListResponse,
    AssignTodoRequest,
    TagCreateRequest,
    TagListResponse,
    TagResponse,
    TodoCreateRequest,
    TodoListResponse,
    TodoResponse,
    TodoUpdateRequest,
)

router = APIRouter()
tags_router = APIRouter()


# ---------------------------------------------------------------------------
# Todos
# ---------------------------------------------------------------------------

@router.get("", response_model=TodoListResponse)
async def list_todos(
    status: Optional[TodoStatus] = None,
    priority: Optional[TodoPriority] = None,
    tag: Optional[uuid.UUID] = None,
    assigned_to: Optional[str] = Query(default=None, max_length=36),
    due_before: Optional[datetime] = None,
    due_after: Optional[datetime] = None,
    search: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_db),
):
    """`assigned_to` takes `me`, `unassigned` or a user id."""
    return await todo_service.list_todos(
        session,
        status=status,
        priority=priority,
        tag_id=tag,
        assigned_to=assigned_to,
        due_before=due_before,
        due_after=due_after,
        search=search,
        page=page,
        limit=limit,
        current_user_id=ctx.user.id,
    )


@router.get("/assigned-to-me", response_model=AssignedTodoListResponse)
async def list_assigned_to_me(
    status: Optional[TodoStatus] = None,
    priority: Optional[TodoPriority] = None,
    search: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    ctx: AuthorizationContext = Depends(require_user),
    session: AsyncSession = Depends(get_system_session),
):
    return await todo_service.list_assigned_to_me(
        ctx.user.id,
        session,
        status=status,
        priority=priority,
        search=search,
        page=page,
        limit=limit,
    )


@router.post("", response_model=TodoResponse, status_code=201)
async def create_todo(
    body: TodoCreateRequest,
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_db),
):
    todo = await todo_service.create_todo(ctx.tenant.id, body, session, ctx.user.id)
    await session.commit()
    return todo


@router.get("/{todo_id}", response_model=TodoResponse)
async def get_todo(
    todo_id: uuid.UUID,
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_db),
):
    return await todo_service.get_todo_response(todo_id, session, ctx.user.id)


@router.patch("/{todo_id}", response_model=TodoResponse)
async def update_todo(
    todo_id: uuid.UUID,
    body: TodoUpdateRequest,
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_db),
):
    todo = await todo_service.update_todo(todo_id, body, session, ctx.user.id)
    await session.commit()
    return todo


@router.delete("/{todo_id}", response_model=SuccessResponse)
async def delete_todo(
    todo_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_db),
):
    await todo_service.delete_todo(todo_id, session)
    await session.commit()
    return SuccessResponse()


@router.post("/{todo_id}/assignees", response_model=TodoResponse)
async def assign_todo(
    todo_id: uuid.UUID,
    body: AssignTodoRequest,
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_db),
):
    todo = await todo_service.assign_todo(todo_id, body.user_ids, ctx.user.id, session)
    await session.commit()
    return todo


@router.delete("/{todo_id}/assignees/{user_id}", response_model=TodoResponse)
async def unassign_todo(
    todo_id: uuid.UUID,
    user_id: uuid.UUID,
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_db),
):
    todo = await todo_service.unassign_todo(todo_id, user_id, ctx.user.id, session)
    await session.commit()
    return todo



# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

@tags_router.get("", response_model=TagListResponse)
async def list_tags(session: AsyncSession = Depends(get_tenant_db)):
    tags = await todo_service.list_tags(session)
    return TagListResponse(data=[todo_service.tag_response(t) for t in tags])


@tags_router.post("", response_model=TagResponse, status_code=201)
async def create_tag(
    body: TagCreateRequest,
    ctx: AuthorizationContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_db),
):
    tag = await todo_service.create_tag(ctx.tenant.id, body, session)
    await session.commit()
    return todo_service.tag_response(tag)


@tags_router.delete("/{tag_id}", response_model=SuccessResponse)
async def delete_tag(
    tag_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_db),
):
    await todo_service.delete_tag(tag_id, session)
    await session.commit()
    return SuccessResponse()
