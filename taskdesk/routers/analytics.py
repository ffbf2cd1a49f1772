from fastapi import APIRouter, Depends

from taskdesk.dependencies import AnalyticsServiceDep, CurrentUserDep, role_rate_limit
from taskdesk.models import TaskAnalytics

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get(
    "/tasks",
    response_model=TaskAnalytics,
    response_model_exclude_none=True,
    dependencies=[Depends(role_rate_limit)],
)
async def task_analytics(user: CurrentUserDep, service: AnalyticsServiceDep):
    """Task distribution for the caller's role; the leaderboard is Admin/Manager only"""
    return await service.task_analytics(user.id, user.role)
