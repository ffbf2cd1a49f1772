import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from taskdesk.cache.layer import cache_layer
from taskdesk.core.config import get_settings
from taskdesk.core.errors import register_exception_handlers
from taskdesk.database import create_db_and_tables
from taskdesk.routers import admin, analytics, auth, events, tasks
from taskdesk.services.broadcaster import Broadcaster
from taskdesk.services.notifier import Notifier

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    await create_db_and_tables()
    await cache_layer.init_cache()

    # Side-effect collaborators exist before the first request is served
    app.state.broadcaster = Broadcaster()
    app.state.notifier = Notifier.from_settings(settings)
    logger.info("Task Desk API started")

    yield

    await app.state.notifier.aclose()
    await cache_layer.close()


app = FastAPI(
    title="Task Desk API",
    description="Role-based task management API with caching, live events and notifications",
    swagger_ui_parameters={"displayRequestDuration": True},
    version="1.0.0",
    lifespan=lifespan,
)

register_exception_handlers(app)

# Include routers
app.include_router(auth.router)
app.include_router(tasks.router)
app.include_router(analytics.router)
app.include_router(admin.router)
app.include_router(events.router)


@app.get("/")
async def root():
    return {
        "message": "Welcome to Task Desk API",
        "docs": "/docs",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check(request: Request):
    return {
        "status": "healthy",
        "cache": cache_layer.get_stats(),
        "liveSubscribers": request.app.state.broadcaster.subscriber_count,
    }
