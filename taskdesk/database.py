from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from taskdesk.core.config import get_settings

load_dotenv()

DATABASE_URL = get_settings().database_url


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # aiosqlite connections are bound to the loop that opened them
        return {"poolclass": NullPool, "connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_async_engine(DATABASE_URL, echo=False, **_engine_options(DATABASE_URL))

# Rows stay readable after commit; services build responses from them
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """Request-scoped session for FastAPI dependencies."""
    async with async_session() as session:
        yield session


async def create_db_and_tables():
    """Create missing tables. Deployed databases are migrated with alembic."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def drop_db_and_tables():
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
