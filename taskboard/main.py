import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse

from taskboard.cache.layer import CacheLayer, cache_layer, get_cache
from taskboard.core.config import SettingsDep, get_settings
from taskboard.core.logging import configure_logging
from taskboard.database import db
from taskboard.errors import register_error_handlers
from taskboard.models import get_utc_now
from taskboard.routers import projects, tasks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    db.connect()
    if settings.create_tables_on_startup:
        await db.create_all()
    await cache_layer.init_cache()
    logger.info(f"{settings.app_name} started")
    yield
    await cache_layer.close()
    await db.dispose()


configure_logging(get_settings().log_level)

app = FastAPI(
    title="Taskboard API",
    description="Async project and task management API with SQLModel, Redis caching and ETags",
    swagger_ui_parameters={"displayRequestDuration": True},
    version="1.0.0",
    lifespan=lifespan,
)

register_error_handlers(app)

# Include routers
app.include_router(projects.router)
app.include_router(tasks.router)
app.include_router(tasks.task_router)


@app.get("/")
async def root(settings: SettingsDep):
    return {
        "message": f"Welcome to {settings.app_name}",
        "docs": "/docs",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check(cache: CacheLayer = Depends(get_cache)):
    """Store reachability plus cache statistics; a cache outage does not fail the check."""
    database_ok = await db.ping()
    return JSONResponse(
        status_code=status.HTTP_200_OK if database_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if database_ok else "unhealthy",
            "timestamp": get_utc_now().isoformat(),
            "database": "ok" if database_ok else "unreachable",
            "cache": cache.get_stats(),
        },
    )
