import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from taskboard import models  # noqa: F401  registers tables on SQLModel.metadata
from taskboard.core.config import get_settings

logger = logging.getLogger(__name__)


class Database:
    """Shared engine and session factory, created once per process."""

    def __init__(self):
        self.engine: AsyncEngine | None = None
        self.sessions: async_sessionmaker[AsyncSession] | None = None

    def connect(self, url: str | None = None, **engine_kwargs) -> None:
        if self.engine is not None:
            return

        settings = get_settings()
        engine_kwargs.setdefault("echo", settings.database_echo)
        if not (url or settings.database_url).startswith("sqlite"):
            engine_kwargs.setdefault("pool_pre_ping", True)

        self.engine = create_async_engine(url or settings.database_url, **engine_kwargs)
        self.sessions = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database engine created")

    async def dispose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Database engine disposed")
        self.engine = None
        self.sessions = None

    async def create_all(self) -> None:
        """Create tables (optional, useful for local runs and testing)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def ping(self) -> bool:
        if self.engine is None:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database ping failed: {e}")
            return False


db = Database()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if db.sessions is None:
        db.connect()
    return db.sessions
