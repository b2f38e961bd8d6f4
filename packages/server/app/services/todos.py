"""
Todo, tag and assignment service.

All functions expect a session bound to the caller's tenant
(``app.core.isolation``); queries here carry no tenant filter of their own.
The one exception is ``list_assigned_to_me``, which spans organizations and
takes a system session.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime
from typing import Optional, Sequence

import structlog
from sqlalchemy import and_, case, delete, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import Conflict, Forbidden, NotFound, ValidationFailed
from app.models.base import ensure_utc, utcnow
from app.models.membership import UserTenant
from app.models.tenant import Tenant
from app.models.todo import Tag, Todo, TodoAssignment, TodoTag
from app.models.user import User
from app.services import memberships as membership_service

from taskhub_shared.schemas.common import MANAGER_ROLES, Pagination, TodoPriority, TodoStatus
from taskhub_shared.schemas.todos import (
    AssignedTodoListResponse,
    AssignedTodoResponse,
    AssigneeResponse,
    TagCreateRequest,
    TagResponse,
    TodoCreateRequest,
    TodoListResponse,
    TodoOrganization,
    TodoResponse,
    TodoUpdateRequest,
)

log = structlog.get_logger()

ASSIGNED_TO_ME = "me"
UNASSIGNED = "unassigned"

Assignee = tuple[TodoAssignment, User]


def tag_response(tag: Tag) -> TagResponse:
    return TagResponse(id=tag.id, name=tag.name, color=tag.color, created_at=ensure_utc(tag.created_at))


def assignee_response(assignment: TodoAssignment, user: User) -> AssigneeResponse:
    return AssigneeResponse(
        id=user.id,
        email=user.email,
        username=user.username,
        assigned_by=assignment.assigned_by,
        assigned_at=ensure_utc(assignment.assigned_at),
    )


def todo_response(
    todo: Todo,
    tags: list[Tag],
    assignees: Sequence[Assignee] = (),
    current_user_id: Optional[uuid.UUID] = None,
) -> TodoResponse:
    return TodoResponse(**_todo_fields(todo, tags, assignees, current_user_id))


def _todo_fields(
    todo: Todo,
    tags: list[Tag],
    assignees: Sequence[Assignee],
    current_user_id: Optional[uuid.UUID],
) -> dict:
    return dict(
        id=todo.id,
        title=todo.title,
        description=todo.description,
        status=todo.status,
        priority=todo.priority,
        due_date=ensure_utc(todo.due_date),
        tags=[tag_response(t) for t in sorted(tags, key=lambda t: t.name)],
        assignees=[assignee_response(a, u) for a, u in assignees],
        assigned_to_me=any(u.id == current_user_id for _, u in assignees),
        created_at=ensure_utc(todo.created_at),
        updated_at=ensure_utc(todo.updated_at),
    )


async def _tags_by_todo(todo_ids: list[uuid.UUID], session: AsyncSession) -> dict[uuid.UUID, list[Tag]]:
    tags: dict[uuid.UUID, list[Tag]] = {todo_id: [] for todo_id in todo_ids}
    if not todo_ids:
        return tags
    result = await session.execute(
        select(TodoTag.todo_id, Tag)
        .join(Tag, Tag.id == TodoTag.tag_id)
        .where(TodoTag.todo_id.in_(todo_ids))
    )
    for todo_id, tag in result.all():
        tags[todo_id].append(tag)
    return tags


async def _assignees_by_todo(
    todo_ids: list[uuid.UUID], session: AsyncSession
) -> dict[uuid.UUID, list[Assignee]]:
    """Assignees per todo, oldest assignment first.

    Users who have since left the organization are not listed; their rows
    come back if they rejoin.
    """
    assignees: dict[uuid.UUID, list[Assignee]] = {todo_id: [] for todo_id in todo_ids}
    if not todo_ids:
        return assignees
    result = await session.execute(
        select(TodoAssignment, User)
        .join(User, User.id == TodoAssignment.user_id)
        .join(
            UserTenant,
            and_(
                UserTenant.user_id == TodoAssignment.user_id,
                UserTenant.tenant_id == TodoAssignment.tenant_id,
            ),
        )
        .where(TodoAssignment.todo_id.in_(todo_ids))
        .order_by(TodoAssignment.assigned_at.asc(), TodoAssignment.id.asc())
    )
    for assignment, user in result.all():
        assignees[assignment.todo_id].append((assignment, user))
    return assignees


async def _attach_tags(
    todo: Todo, tag_ids: list[uuid.UUID], session: AsyncSession
) -> None:
    unique_ids = list(dict.fromkeys(tag_ids))
    if not unique_ids:
        return
    found = await session.execute(select(Tag.id).where(Tag.id.in_(unique_ids)))
    if len(found.all()) != len(unique_ids):
        raise ValidationFailed("One or more tags not found")
    session.add_all(
        [TodoTag(todo_id=todo.id, tag_id=tag_id, tenant_id=todo.tenant_id) for tag_id in unique_ids]
    )
    await session.flush()


def _assignment_condition(assigned_to: str, current_user_id: Optional[uuid.UUID]):
    if assigned_to == UNASSIGNED:
        return ~Todo.id.in_(select(TodoAssignment.todo_id))
    if assigned_to == ASSIGNED_TO_ME:
        if current_user_id is None:
            raise ValidationFailed("assigned_to=me requires a user")
        user_id = current_user_id
    else:
        try:
            user_id = uuid.UUID(assigned_to)
        except ValueError:
            raise ValidationFailed("assigned_to must be 'me', 'unassigned' or a user id")
    return Todo.id.in_(select(TodoAssignment.todo_id).where(TodoAssignment.user_id == user_id))


# ---------------------------------------------------------------------------
# Todos
# ---------------------------------------------------------------------------

async def list_todos(
    session: AsyncSession,
    *,
    status: Optional[TodoStatus] = None,
    priority: Optional[TodoPriority] = None,
    tag_id: Optional[uuid.UUID] = None,
    assigned_to: Optional[str] = None,
    due_before: Optional[datetime] = None,
    due_after: Optional[datetime] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    current_user_id: Optional[uuid.UUID] = None,
) -> TodoListResponse:
    conditions = []
    if status is not None:
        conditions.append(Todo.status == TodoStatus(status).value)
    if priority is not None:
        conditions.append(Todo.priority == TodoPriority(priority).value)
    if tag_id is not None:
        conditions.append(Todo.id.in_(select(TodoTag.todo_id).where(TodoTag.tag_id == tag_id)))
    if assigned_to:
        conditions.append(_assignment_condition(assigned_to, current_user_id))
    if due_before is not None:
        conditions.append(Todo.due_date <= due_before)
    if due_after is not None:
        conditions.append(Todo.due_date >= due_after)
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(Todo.title.ilike(pattern), Todo.description.ilike(pattern)))

    total = await session.scalar(select(func.count(Todo.id)).where(*conditions)) or 0

    result = await session.execute(
        select(Todo)
        .where(*conditions)
        .order_by(Todo.created_at.desc(), Todo.id)
        .limit(limit)
        .offset((page - 1) * limit)
    )
    todos = list(result.scalars().all())
    todo_ids = [t.id for t in todos]
    tags = await _tags_by_todo(todo_ids, session)
    assignees = await _assignees_by_todo(todo_ids, session)

    return TodoListResponse(
        data=[todo_response(t, tags[t.id], assignees[t.id], current_user_id) for t in todos],
        pagination=Pagination(
            page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)
        ),
    )


async def get_todo(todo_id: uuid.UUID, session: AsyncSession) -> Todo:
    result = await session.execute(select(Todo).where(Todo.id == todo_id))
    todo = result.scalar_one_or_none()
    if todo is None:
        raise NotFound("Todo not found")
    return todo


async def get_todo_response(
    todo_id: uuid.UUID, session: AsyncSession, current_user_id: Optional[uuid.UUID] = None
) -> TodoResponse:
    todo = await get_todo(todo_id, session)
    tags = await _tags_by_todo([todo.id], session)
    assignees = await _assignees_by_todo([todo.id], session)
    return todo_response(todo, tags[todo.id], assignees[todo.id], current_user_id)


async def create_todo(
    tenant_id: uuid.UUID,
    req: TodoCreateRequest,
    session: AsyncSession,
    current_user_id: Optional[uuid.UUID] = None,
) -> TodoResponse:
    todo = Todo(
        tenant_id=tenant_id,
        title=req.title,
        description=req.description,
        status=req.status.value,
        priority=req.priority.value,
        due_date=req.due_date,
    )
    session.add(todo)
    await session.flush()
    await _attach_tags(todo, req.tag_ids, session)

    log.info("todo.created", todo_id=str(todo.id), tenant_id=str(tenant_id))
    return await get_todo_response(todo.id, session, current_user_id)


async def update_todo(
    todo_id: uuid.UUID,
    req: TodoUpdateRequest,
    session: AsyncSession,
    current_user_id: Optional[uuid.UUID] = None,
) -> TodoResponse:
    todo = await get_todo(todo_id, session)
    fields = req.model_dump(exclude_unset=True, exclude={"tag_ids"})
    for name, value in fields.items():
        if isinstance(value, (TodoStatus, TodoPriority)):
            value = value.value
        setattr(todo, name, value)
    todo.updated_at = utcnow()
    session.add(todo)
    await session.flush()

    if req.tag_ids is not None:
        await session.execute(
            delete(TodoTag)
            .where(TodoTag.todo_id == todo.id)
            .execution_options(synchronize_session=False)
        )
        await _attach_tags(todo, req.tag_ids, session)

    log.info("todo.updated", todo_id=str(todo_id))
    return await get_todo_response(todo.id, session, current_user_id)


async def delete_todo(todo_id: uuid.UUID, session: AsyncSession) -> None:
    result = await session.execute(
        delete(Todo).where(Todo.id == todo_id).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound("Todo not found")
    log.info("todo.deleted", todo_id=str(todo_id))


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

async def assign_todo(
    todo_id: uuid.UUID,
    user_ids: list[uuid.UUID],
    actor_id: uuid.UUID,
    session: AsyncSession,
) -> TodoResponse:
    """Assign members of the todo's organization. Existing assignments are kept."""
    todo = await get_todo(todo_id, session)
    unique_ids = list(dict.fromkeys(user_ids))
    if await membership_service.non_members(unique_ids, todo.tenant_id, session):
        raise ValidationFailed("One or more users are not members of this organization")

    existing = await session.execute(
        select(TodoAssignment.user_id).where(TodoAssignment.todo_id == todo.id)
    )
    already = set(existing.scalars().all())
    added = [user_id for user_id in unique_ids if user_id not in already]
    session.add_all(
        [
            TodoAssignment(
                tenant_id=todo.tenant_id, todo_id=todo.id, user_id=user_id, assigned_by=actor_id
            )
            for user_id in added
        ]
    )
    try:
        await session.flush()
    except IntegrityError:
        raise Conflict("The todo assignments changed concurrently; retry")

    log.info(
        "todo.assigned",
        todo_id=str(todo.id),
        user_ids=[str(u) for u in added],
        assigned_by=str(actor_id),
    )
    return await get_todo_response(todo.id, session, actor_id)


async def unassign_todo(
    todo_id: uuid.UUID,
    user_id: uuid.UUID,
    actor_id: uuid.UUID,
    session: AsyncSession,
) -> TodoResponse:
    """Remove one assignee.

    Allowed for the assignee themselves, whoever made the assignment, and the
    organization's owners and admins.
    """
    todo = await get_todo(todo_id, session)
    result = await session.execute(
        select(TodoAssignment)
        .where(TodoAssignment.todo_id == todo.id)
        .where(TodoAssignment.user_id == user_id)
    )
    assignment = result.scalar_one_or_none()
    if assignment is None:
        raise NotFound("Assignment not found")

    if actor_id not in (user_id, assignment.assigned_by):
        role = await membership_service.get_role(actor_id, todo.tenant_id, session)
        if role not in MANAGER_ROLES:
            raise Forbidden("You don't have permission to unassign this user")

    await session.execute(
        delete(TodoAssignment)
        .where(TodoAssignment.id == assignment.id)
        .execution_options(synchronize_session=False)
    )
    log.info(
        "todo.unassigned", todo_id=str(todo.id), user_id=str(user_id), unassigned_by=str(actor_id)
    )
    return await get_todo_response(todo.id, session, actor_id)


async def list_assigned_to_me(
    user_id: uuid.UUID,
    session: AsyncSession,
    *,
    status: Optional[TodoStatus] = None,
    priority: Optional[TodoPriority] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> AssignedTodoListResponse:
    """Todos assigned to ``user_id`` across every active organization they belong to.

    ``session`` must be a system session. Ordered by priority (high first),
    then due date (soonest first, undated last), then newest.
    """
    conditions = [TodoAssignment.user_id == user_id, Tenant.is_active == True]  # noqa: E712
    if status is not None:
        conditions.append(Todo.status == TodoStatus(status).value)
    if priority is not None:
        conditions.append(Todo.priority == TodoPriority(priority).value)
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(Todo.title.ilike(pattern), Todo.description.ilike(pattern)))

    def _joined(stmt):
        return (
            stmt.join(TodoAssignment, TodoAssignment.todo_id == Todo.id)
            .join(Tenant, Tenant.id == Todo.tenant_id)
            .join(
                UserTenant,
                and_(UserTenant.tenant_id == Todo.tenant_id, UserTenant.user_id == user_id),
            )
            .where(*conditions)
        )

    total = await session.scalar(_joined(select(func.count(Todo.id)))) or 0

    priority_rank = case(
        (Todo.priority == TodoPriority.HIGH.value, 1),
        (Todo.priority == TodoPriority.MEDIUM.value, 2),
        else_=3,
    )
    result = await session.execute(
        _joined(select(Todo, Tenant))
        .order_by(
            priority_rank,
            Todo.due_date.is_(None),
            Todo.due_date.asc(),
            Todo.created_at.desc(),
            Todo.id,
        )
        .limit(limit)
        .offset((page - 1) * limit)
    )
    rows = result.all()
    todo_ids = [todo.id for todo, _ in rows]
    tags = await _tags_by_todo(todo_ids, session)
    assignees = await _assignees_by_todo(todo_ids, session)

    return AssignedTodoListResponse(
        data=[
            AssignedTodoResponse(
                **_todo_fields(todo, tags[todo.id], assignees[todo.id], user_id),
                organization=TodoOrganization(id=tenant.id, name=tenant.name, slug=tenant.slug),
            )
            for todo, tenant in rows
        ],
        pagination=Pagination(
            page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)
        ),
    )


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

async def list_tags(session: AsyncSession) -> list[Tag]:
    result = await session.execute(select(Tag).order_by(Tag.name.asc()))
    return list(result.scalars().all())


async def create_tag(tenant_id: uuid.UUID, req: TagCreateRequest, session: AsyncSession) -> Tag:
    existing = await session.execute(select(Tag.id).where(Tag.name == req.name))
    if existing.first() is not None:
        raise Conflict("A tag with this name already exists")

    tag = Tag(tenant_id=tenant_id, name=req.name, color=req.color)
    session.add(tag)
    try:
        await session.flush()
    except IntegrityError:
        raise Conflict("A tag with this name already exists")

    log.info("tag.created", tag_id=str(tag.id), tenant_id=str(tenant_id))
    return tag


async def delete_tag(tag_id: uuid.UUID, session: AsyncSession) -> None:
    result = await session.execute(
        delete(Tag).where(Tag.id == tag_id).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound("Tag not found")
    log.info("tag.deleted", tag_id=str(tag_id))
