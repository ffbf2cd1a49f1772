"""
Role-based access rules for tasks.

Pure functions: no I/O, no session. ``task_filter`` produces the WHERE
clause that scopes reads, ``can_mutate`` decides writes against an already
loaded task.
"""

import uuid
from typing import Literal

from sqlalchemy import or_, true
from sqlalchemy.sql.elements import ColumnElement

from taskdesk.models import Role, Task

Operation = Literal["update", "delete", "assign"]


def task_filter(user_id: uuid.UUID, role: Role) -> ColumnElement[bool]:
    """
    User    -> tasks assigned to them
    Manager -> tasks they created or are assigned to
    Admin   -> everything
    """
    if role == Role.USER:
        return Task.assigned_to == user_id
    if role == Role.MANAGER:
        return or_(Task.created_by == user_id, Task.assigned_to == user_id)
    return true()


def can_mutate(role: Role, user_id: uuid.UUID, task: Task, operation: Operation) -> bool:
    if operation == "update":
        return role == Role.ADMIN or user_id in (task.assigned_to, task.created_by)
    if operation == "delete":
        return role == Role.ADMIN or user_id == task.created_by
    if operation == "assign":
        return role in (Role.ADMIN, Role.MANAGER)
    raise ValueError(f"Unknown operation: {operation}")
