"""Todo and tag schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, UUID4

from .common import Pagination, TodoPriority, TodoStatus

COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class TagCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)


class TagResponse(BaseModel):
    id: UUID4
    name: str
    color: Optional[str] = None
    created_at: datetime


class TagListResponse(BaseModel):
    data: List[TagResponse]


class TodoCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    status: TodoStatus = TodoStatus.PENDING
    priority: TodoPriority = TodoPriority.MEDIUM
    due_date: Optional[datetime] = None
    tag_ids: List[UUID4] = []


class TodoUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[TodoStatus] = None
    priority: Optional[TodoPriority] = None
    due_date: Optional[datetime] = None
    tag_ids: Optional[List[UUID4]] = None


class AssigneeResponse(BaseModel):
    id: UUID4
    email: str
    username: str
    assigned_by: UUID4
    assigned_at: datetime


class AssignTodoRequest(BaseModel):
    user_ids: List[UUID4] = Field(min_length=1, max_length=50)


class TodoResponse(BaseModel):
    id: UUID4
    title: str
    description: Optional[str] = None
    status: TodoStatus
    priority: TodoPriority
    due_date: Optional[datetime] = None
    tags: List[TagResponse] = []
    assignees: List[AssigneeResponse] = []
    assigned_to_me: bool = False
    created_at: datetime
    updated_at: datetime


class TodoListResponse(BaseModel):
    data: List[TodoResponse]
    pagination: Pagination


class TodoOrganization(BaseModel):
    id: UUID4
    name: str
    slug: str


class AssignedTodoResponse(TodoResponse):
    """A todo assigned to the caller, with the organization it belongs to."""
    organization: TodoOrganization


class AssignedTodoListResponse(BaseModel):
    data: List[AssignedTodoResponse]
    pagination: Pagination
