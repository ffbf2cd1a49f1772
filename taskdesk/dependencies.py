from dataclasses import dataclass
import uuid

from fastapi import Depends, Header, Request
from sqlmodel.ext.asyncio.session import AsyncSession
from typing_extensions import Annotated

from taskdesk.cache.layer import cache_layer
from taskdesk.core.errors import AuthenticationError, AuthorizationError
from taskdesk.core.rate_limit import client_ip, limiters
from taskdesk.core.security import verify_token
from taskdesk.database import get_db
from taskdesk.models import Role, parse_id
from taskdesk.services.analytics_service import AnalyticsService
from taskdesk.services.auth_service import AuthService
from taskdesk.services.broadcaster import Broadcaster
from taskdesk.services.notifier import Notifier
from taskdesk.services.task_service import TaskService


@dataclass(frozen=True)
class CurrentUser:
    id: uuid.UUID
    role: Role


def principal_from_token(token: str | None) -> CurrentUser:
    if not token:
        raise AuthenticationError("No token, authorization denied")
    payload = verify_token(token)
    user_id = parse_id(payload.get("id"))
    try:
        role = Role(payload.get("role"))
    except ValueError:
        role = None
    if user_id is None or role is None:
        raise AuthenticationError("Token is not valid")
    return CurrentUser(id=user_id, role=role)


async def get_current_user(authorization: str | None = Header(default=None)) -> CurrentUser:
    token = authorization
    if token and token.startswith("Bearer "):
        token = token[len("Bearer "):]
    return principal_from_token(token.strip() if token else None)


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
SessionDep = Annotated[AsyncSession, Depends(get_db)]


def require_roles(*roles: Role):
    """Dependency factory rejecting callers whose role is not listed."""

    async def checker(user: CurrentUserDep) -> CurrentUser:
        if user.role not in roles:
            raise AuthorizationError("Access denied: Insufficient privileges.")
        return user

    return checker


async def role_rate_limit(user: CurrentUserDep):
    limiters[user.role.value].hit(str(user.id))


async def sensitive_rate_limit(user: CurrentUserDep):
    limiters["sensitive"].hit(str(user.id))


async def login_rate_limit(request: Request):
    limiters["login"].hit(client_ip(request))


def get_broadcaster(request: Request) -> Broadcaster:
    return request.app.state.broadcaster


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_task_service(
    db: SessionDep,
    broadcaster: Broadcaster = Depends(get_broadcaster),
    notifier: Notifier = Depends(get_notifier),
) -> TaskService:
    return TaskService(db, cache=cache_layer, broadcaster=broadcaster, notifier=notifier)


def get_auth_service(db: SessionDep) -> AuthService:
    return AuthService(db)


def get_analytics_service(db: SessionDep) -> AnalyticsService:
    return AnalyticsService(db)


TaskServiceDep = Annotated[TaskService, Depends(get_task_service)]
AnalyticsServiceDep = Annotated[AnalyticsService, Depends(get_analytics_service)]
AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
