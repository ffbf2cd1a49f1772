from fastapi import APIRouter, Depends, status

from taskdesk.dependencies import AuthServiceDep, CurrentUserDep, login_rate_limit
from taskdesk.models import MessageResponse, TokenResponse, UserLogin, UserRegister, UserResponse

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(data: UserRegister, service: AuthServiceDep):
    """Register a user (role User) and return a token"""
    return TokenResponse(token=await service.register(data))


@router.post(
    "/login", response_model=TokenResponse, dependencies=[Depends(login_rate_limit)]
)
async def login(data: UserLogin, service: AuthServiceDep):
    return TokenResponse(token=await service.login(data.email, data.password))


@router.get("/profile", response_model=UserResponse)
async def profile(user: CurrentUserDep, service: AuthServiceDep):
    return await service.profile(user.id)


@router.post("/logout", response_model=MessageResponse)
async def logout(user: CurrentUserDep):
    # Tokens are stateless; there is nothing to revoke server-side
    return MessageResponse(msg="Logged out successfully.")
