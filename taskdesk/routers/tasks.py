from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request, status

from taskdesk.cache.decorators import cached_response, request_cache_key
from taskdesk.dependencies import (
    CurrentUserDep,
    TaskServiceDep,
    role_rate_limit,
    sensitive_rate_limit,
)
from taskdesk.models import (
    MessageResponse,
    Priority,
    TaskAssign,
    TaskCreate,
    TaskDetail,
    TaskResponse,
    TaskStatus,
)
from taskdesk.services.task_service import TaskQuery

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _list_cache_key(request: Request, user, **_) -> str:
    # Lists are role-scoped, so the caller is part of the key
    return f"{request_cache_key(request)}|{user.id}:{user.role.value}"


@router.post(
    "",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(sensitive_rate_limit)],
)
async def create_task(task_data: TaskCreate, user: CurrentUserDep, service: TaskServiceDep):
    """Create a new task assigned to ``assignedTo``; status always starts as Pending"""
    return await service.create_task(user.id, task_data)


@router.get("", response_model=list[TaskDetail], dependencies=[Depends(role_rate_limit)])
@cached_response(_list_cache_key)
async def get_tasks(
    request: Request,
    user: CurrentUserDep,
    service: TaskServiceDep,
    task_status: TaskStatus | None = Query(default=None, alias="status"),
    priority: Priority | None = None,
    search: str | None = Query(default=None, min_length=1),
    due_date_from: datetime | None = Query(default=None, alias="dueDateFrom"),
    due_date_to: datetime | None = Query(default=None, alias="dueDateTo"),
    sort_by: str | None = Query(default=None, alias="sortBy"),
    sort_order: str | None = Query(default=None, alias="sortOrder"),
):
    """List the tasks visible to the caller's role, filtered and sorted"""
    query = TaskQuery(
        status=task_status,
        priority=priority,
        search=search,
        due_date_from=due_date_from,
        due_date_to=due_date_to,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return await service.list_tasks(user.id, user.role, query)


@router.put(
    "/{task_id}/assign",
    response_model=TaskDetail,
    dependencies=[Depends(sensitive_rate_limit)],
)
async def assign_task(
    task_id: str, assignment: TaskAssign, user: CurrentUserDep, service: TaskServiceDep
):
    """Reassign a task (Admin or Manager)"""
    return await service.assign_task(user.id, user.role, task_id, assignment.user_id)


@router.put(
    "/{task_id}",
    response_model=TaskResponse,
    dependencies=[Depends(sensitive_rate_limit)],
)
async def update_task(
    task_id: str,
    user: CurrentUserDep,
    service: TaskServiceDep,
    payload: dict[str, Any] = Body(default_factory=dict),
):
    # The payload is validated after the permission check
    return await service.update_task(user.id, user.role, task_id, payload)


@router.delete(
    "/{task_id}",
    response_model=MessageResponse,
    dependencies=[Depends(sensitive_rate_limit)],
)
async def delete_task(task_id: str, user: CurrentUserDep, service: TaskServiceDep):
    """Delete a task"""
    await service.delete_task(user.id, user.role, task_id)
    return MessageResponse(msg="Task removed")
