from fastapi import APIRouter, Depends

from taskdesk.dependencies import AuthServiceDep, require_roles
from taskdesk.models import Role, RoleUpdate, RoleUpdateResponse

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_roles(Role.ADMIN))],
)


@router.put("/users/{user_id}/role", response_model=RoleUpdateResponse)
async def update_user_role(user_id: str, data: RoleUpdate, service: AuthServiceDep):
    """Change a user's role (Admin only)"""
    user = await service.change_role(user_id, data.role)
    return RoleUpdateResponse(
        msg=f"Role for user {user.username} updated to {data.role.value}", user=user
    )
