import logging
import uuid

from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskdesk.core.errors import ConflictError, NotFoundError, ValidationError
from taskdesk.core.security import create_token, hash_password, verify_password
from taskdesk.models import Role, User, UserRegister, UserResponse, parse_id

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _find_by_email(self, email: str) -> User | None:
        result = await self.db.exec(select(User).where(User.email == email.lower()))
        return result.first()

    async def register(self, data: UserRegister) -> str:
        if await self._find_by_email(data.email):
            raise ConflictError("User already exists")

        user = User(
            username=data.username,
            email=data.email.lower(),
            password_hash=hash_password(data.password),
            role=Role.USER.value,
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError as e:
            # Concurrent registration with the same email
            await self.db.rollback()
            raise ConflictError("User already exists") from e
        await self.db.refresh(user)
        logger.info(f"Registered user {user.id}")
        return create_token(str(user.id), user.role)

    async def login(self, email: str, password: str) -> str:
        user = await self._find_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("Rejected login attempt")
            raise ValidationError("Invalid Credentials")
        return create_token(str(user.id), user.role)

    async def profile(self, user_id: uuid.UUID) -> UserResponse:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return UserResponse.model_validate(user)

    async def change_role(self, user_id: str, role: Role) -> UserResponse:
        parsed = parse_id(user_id)
        if parsed is None:
            raise ValidationError.for_field("userId", "Invalid user ID format in URL parameter")

        user = await self.db.get(User, parsed)
        if user is None:
            raise NotFoundError("User not found")

        user.role = role.value
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        logger.info(f"Role for user {user.id} set to {role.value}")
        return UserResponse.model_validate(user)
