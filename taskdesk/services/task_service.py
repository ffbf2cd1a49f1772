import inspect
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import or_
from sqlalchemy.orm import aliased
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskdesk.cache.layer import CacheLayer
from taskdesk.core.errors import AuthorizationError, NotFoundError, ValidationError
from taskdesk.models import (
    Priority,
    Role,
    Task,
    TaskCreate,
    TaskDetail,
    TaskResponse,
    TaskStatus,
    TaskUpdate,
    User,
    UserSummary,
    as_utc,
    get_utc_now,
    parse_id,
)
from taskdesk.services.access_policy import can_mutate, task_filter
from taskdesk.services.broadcaster import Broadcaster
from taskdesk.services.notifier import Notifier

logger = logging.getLogger(__name__)

# Every cached list response lives under this key prefix
TASK_LIST_CACHE_PREFIX = "/tasks"

SORT_FIELDS = {
    "createdAt": Task.created_at,
    "updatedAt": Task.updated_at,
    "dueDate": Task.due_date,
    "priority": Task.priority,
    "status": Task.status,
    "title": Task.title,
}

# Columns an update may not set to null
_REQUIRED_ON_UPDATE = ("title", "priority", "status", "assigned_to")


@dataclass
class TaskQuery:
    """Caller-supplied list filters, ANDed with the role filter."""

    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    search: Optional[str] = None
    due_date_from: Optional[datetime] = None
    due_date_to: Optional[datetime] = None
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None


class TaskService:
    """
    Task mutations and listing.

    Every mutation commits a single task row, then runs the post-commit
    hooks in order: cache invalidation, broadcast, notification. A hook
    failure is logged and never changes the committed result.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: CacheLayer,
        broadcaster: Broadcaster,
        notifier: Notifier,
    ):
        self.db = db
        self.cache = cache
        self.broadcaster = broadcaster
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_tasks(
        self, user_id: uuid.UUID, role: Role, query: TaskQuery | None = None
    ) -> list[TaskDetail]:
        query = query or TaskQuery()
        assignee, creator = aliased(User), aliased(User)
        stmt = (
            select(Task, assignee, creator)
            .outerjoin(assignee, assignee.id == Task.assigned_to)
            .outerjoin(creator, creator.id == Task.created_by)
            .where(task_filter(user_id, role))
        )

        if query.status:
            stmt = stmt.where(Task.status == query.status.value)
        if query.priority:
            stmt = stmt.where(Task.priority == query.priority.value)
        if query.search:
            term = f"%{_escape_like(query.search)}%"
            stmt = stmt.where(
                or_(
                    Task.title.ilike(term, escape="\\"),
                    Task.description.ilike(term, escape="\\"),
                )
            )
        if query.due_date_from:
            stmt = stmt.where(Task.due_date >= as_utc(query.due_date_from))
        if query.due_date_to:
            stmt = stmt.where(Task.due_date <= as_utc(query.due_date_to))

        if query.sort_by:
            column = SORT_FIELDS.get(query.sort_by)
            if column is None:
                raise ValidationError.for_field(
                    "sortBy", f"sortBy must be one of: {', '.join(SORT_FIELDS)}"
                )
            stmt = stmt.order_by(column.desc() if query.sort_order == "desc" else column.asc())
        else:
            stmt = stmt.order_by(Task.created_at.desc())

        result = await self.db.exec(stmt)
        return [_detail(task, a, c) for task, a, c in result.all()]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_task(self, user_id: uuid.UUID, task_data: TaskCreate) -> TaskResponse:
        assignee_id = await self._existing_user_id(task_data.assigned_to)

        now = get_utc_now()
        task = Task(
            title=task_data.title,
            description=task_data.description,
            due_date=as_utc(task_data.due_date),
            priority=task_data.priority.value,
            status=TaskStatus.PENDING.value,
            assigned_to=assignee_id,
            created_by=user_id,
            created_at=now,
            updated_at=now,
        )
        self.db.add(task)
        await self.db.commit()
        await self.db.refresh(task)
        logger.info(f"Task {task.id} created by {user_id}")

        result = TaskResponse.model_validate(task)
        body = _dump(result)
        await self._after_commit(
            "task:created",
            {"task": body},
            lambda: self.notifier.send("TASK_CREATED", body, str(assignee_id)),
        )
        return result

    async def update_task(
        self, user_id: uuid.UUID, role: Role, task_id: str, payload: dict[str, Any]
    ) -> TaskResponse:
        task = await self._get_task_or_404(task_id)

        # Checked against the stored state, before the payload is applied
        if not can_mutate(role, user_id, task, "update"):
            raise AuthorizationError("Forbidden: You do not have permission to update this task.")

        try:
            task_data = TaskUpdate.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e

        updates = task_data.model_dump(exclude_unset=True)
        for field in _REQUIRED_ON_UPDATE:
            if field in updates and updates[field] is None:
                raise ValidationError.for_field(_camel(field), f"{_camel(field)} cannot be null")

        notification_type = "TASK_STATUS_UPDATE"
        if "assigned_to" in updates:
            new_assignee = await self._existing_user_id(updates["assigned_to"])
            if new_assignee != task.assigned_to:
                notification_type = "TASK_ASSIGNED"
            updates["assigned_to"] = new_assignee
        for field in ("priority", "status"):
            if updates.get(field) is not None:
                updates[field] = updates[field].value
        if "due_date" in updates:
            updates["due_date"] = as_utc(updates["due_date"])

        task.sqlmodel_update(updates)
        task.updated_at = get_utc_now()
        self.db.add(task)
        await self.db.commit()
        await self.db.refresh(task)
        logger.info(f"Task {task.id} updated by {user_id}")

        result = TaskResponse.model_validate(task)
        body = _dump(result)
        await self._after_commit(
            "task:updated",
            {"task": body},
            lambda: self.notifier.send(notification_type, body, str(result.assigned_to)),
        )
        return result

    async def delete_task(self, user_id: uuid.UUID, role: Role, task_id: str) -> uuid.UUID:
        task = await self._get_task_or_404(task_id)

        if not can_mutate(role, user_id, task, "delete"):
            raise AuthorizationError("Forbidden: You do not have permission to delete this task.")

        deleted_id = task.id
        prior_assignee = str(task.assigned_to)
        await self.db.delete(task)
        await self.db.commit()
        logger.info(f"Task {deleted_id} deleted by {user_id}")

        # The record is gone, so the notification only carries id + assignee
        minimal = {"id": str(deleted_id), "assignedTo": prior_assignee}
        await self._after_commit(
            "task:deleted",
            {"taskId": str(deleted_id)},
            lambda: self.notifier.send("TASK_DELETED", minimal, prior_assignee),
        )
        return deleted_id

    async def assign_task(
        self, user_id: uuid.UUID, role: Role, task_id: str, assignee: str
    ) -> TaskDetail:
        if parse_id(task_id) is None or parse_id(assignee) is None:
            raise ValidationError("Invalid Task ID or User ID")

        task = await self._get_task_or_404(task_id)

        if not can_mutate(role, user_id, task, "assign"):
            raise AuthorizationError("Access denied: Insufficient privileges.")

        assignee_id = parse_id(assignee)
        assignee_user = await self.db.get(User, assignee_id)
        if assignee_user is None:
            raise NotFoundError("User not found")

        task.assigned_to = assignee_id
        task.updated_at = get_utc_now()
        self.db.add(task)
        await self.db.commit()
        await self.db.refresh(task)
        logger.info(f"Task {task.id} assigned to {assignee_id} by {user_id}")

        creator_user = await self.db.get(User, task.created_by)
        result = _detail(task, assignee_user, creator_user)
        body = _dump(result)
        await self._after_commit(
            "task:assigned",
            {"task": body},
            lambda: self.notifier.send("TASK_ASSIGNED", body, str(assignee_id)),
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_task_or_404(self, task_id: str) -> Task:
        parsed = parse_id(task_id)
        task = await self.db.get(Task, parsed) if parsed else None
        if task is None:
            raise NotFoundError("Task not found")
        return task

    async def _existing_user_id(self, value: str) -> uuid.UUID:
        user_id = parse_id(value)
        if user_id is None:
            raise ValidationError.for_field(
                "assignedTo", "Assigned user ID must be a valid ID"
            )
        if await self.db.get(User, user_id) is None:
            raise ValidationError.for_field("assignedTo", "Assigned user does not exist")
        return user_id

    async def _invalidate_list_cache(self):
        await self.cache.delete_prefix(TASK_LIST_CACHE_PREFIX)

    async def _after_commit(self, event: str, broadcast_payload: dict, notify: Callable):
        hooks = (
            ("cache invalidation", self._invalidate_list_cache),
            ("broadcast", lambda: self.broadcaster.emit(event, broadcast_payload)),
            ("notification", notify),
        )
        for name, hook in hooks:
            try:
                if inspect.iscoroutinefunction(hook):
                    await hook()
                else:
                    hook()
            except Exception:
                logger.exception(f"Post-commit {name} failed after {event}")


def _dump(task: TaskResponse) -> dict:
    return jsonable_encoder(task, by_alias=True)


def _camel(field: str) -> str:
    head, *rest = field.split("_")
    return head + "".join(part.title() for part in rest)


def _detail(task: Task, assignee: User | None, creator: User | None) -> TaskDetail:
    return TaskDetail(
        **TaskResponse.model_validate(task).model_dump(),
        assignee=UserSummary.model_validate(assignee) if assignee else None,
        creator=UserSummary.model_validate(creator) if creator else None,
    )


def _escape_like(term: str) -> str:
    """Make ``%`` and ``_`` in a search term match literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
