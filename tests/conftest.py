# tests/conftest.py

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

# Settings are read at import time, so the environment is pinned before
# anything from taskdesk is imported.
_DB_DIR = Path(tempfile.mkdtemp(prefix="taskdesk-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR / 'taskdesk.sqlite3'}"
os.environ["REDIS_DSN"] = ""
os.environ["JWT_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ.pop("NOTIFICATION_SERVICE_URL", None)
os.environ.pop("NOTIFICATION_API_KEY", None)

from taskdesk.cache.layer import cache_layer  # noqa: E402
from taskdesk.core.rate_limit import reset_limiters  # noqa: E402
from taskdesk.core.security import create_token, hash_password  # noqa: E402
from taskdesk.database import async_session, create_db_and_tables, drop_db_and_tables  # noqa: E402
from taskdesk.models import Role, User  # noqa: E402


async def _reset_db() -> None:
    await drop_db_and_tables()
    await create_db_and_tables()


@pytest.fixture(autouse=True)
def clean_state():
    """Fresh tables, empty cache and rate-limit counters for every test."""
    asyncio.run(_reset_db())
    cache_layer.clear()
    reset_limiters()
    yield
    cache_layer.clear()


@pytest.fixture()
def client():
    from taskdesk.main import app

    with TestClient(app) as c:
        yield c


@pytest_asyncio.fixture()
async def session():
    async with async_session() as s:
        yield s


class UserFactory:
    """Inserts users straight into the identity store and mints their tokens."""

    def __init__(self):
        self.created: dict[str, User] = {}

    async def _insert(self, username: str, role: Role, password: str) -> User:
        async with async_session() as s:
            user = User(
                username=username,
                email=f"{username}@test.com",
                password_hash=hash_password(password),
                role=role.value,
            )
            s.add(user)
            await s.commit()
            await s.refresh(user)
            return user

    def __call__(self, username: str, role: Role = Role.USER, password: str = "password"):
        user = asyncio.run(self._insert(username, role, password))
        self.created[username] = user
        return user

    @staticmethod
    def headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_token(str(user.id), user.role)}"}


@pytest.fixture()
def make_user() -> UserFactory:
    return UserFactory()


@pytest.fixture()
def users(make_user):
    """admin / manager / u1 / u2, one per role plus a second plain user."""
    return {
        "admin": make_user("admin", Role.ADMIN),
        "manager": make_user("manager", Role.MANAGER),
        "u1": make_user("u1", Role.USER),
        "u2": make_user("u2", Role.USER),
    }


@pytest.fixture()
def auth(make_user):
    return make_user.headers
