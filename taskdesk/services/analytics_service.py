import uuid
from datetime import datetime, timedelta
from typing import Iterable, Protocol

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskdesk.models import (
    LeaderboardEntry,
    Priority,
    Role,
    Task,
    TaskAnalytics,
    TaskStatus,
    User,
    as_utc,
    get_utc_now,
)
from taskdesk.services.access_policy import task_filter

STATUS_BUCKETS = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED)
DUE_SOON_WINDOW = timedelta(hours=24)


class TaskRow(Protocol):
    status: str
    priority: str
    due_date: datetime | None
    username: str | None


def summarize_tasks(rows: Iterable[TaskRow], role: Role, now: datetime) -> TaskAnalytics:
    """
    Aggregate task rows in one pass.

    Statuses and priorities outside the known buckets still count towards
    the total but get no bucket of their own. The leaderboard only covers
    rows whose assignee resolved to a username and is returned for Admin
    and Manager only.
    """
    by_status = {s.value: 0 for s in STATUS_BUCKETS}
    by_priority = {p.value: 0 for p in Priority}
    leaderboard: dict[str, LeaderboardEntry] = {}
    total = overdue = due_soon = 0
    soon = now + DUE_SOON_WINDOW

    for row in rows:
        total += 1
        if row.status in by_status:
            by_status[row.status] += 1
        if row.priority in by_priority:
            by_priority[row.priority] += 1

        due = as_utc(row.due_date)
        if due is not None:
            if due < now and row.status != TaskStatus.COMPLETED.value:
                overdue += 1
            if now < due <= soon:
                due_soon += 1

        if row.username:
            entry = leaderboard.setdefault(row.username, LeaderboardEntry())
            entry.total += 1
            if row.status == TaskStatus.COMPLETED.value:
                entry.completed += 1

    return TaskAnalytics(
        total_tasks=total,
        tasks_by_status=by_status,
        tasks_by_priority=by_priority,
        overdue_tasks=overdue,
        tasks_due_soon=due_soon,
        user_leaderboard=leaderboard if role in (Role.ADMIN, Role.MANAGER) else None,
    )


class AnalyticsService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def task_analytics(self, user_id: uuid.UUID, role: Role) -> TaskAnalytics:
        stmt = (
            select(Task.status, Task.priority, Task.due_date, User.username)
            .join(User, User.id == Task.assigned_to, isouter=True)
            .where(task_filter(user_id, role))
        )
        result = await self.db.exec(stmt)
        return summarize_tasks(result.all(), role, get_utc_now())
