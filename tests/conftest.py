"""
Pytest configuration and shared fixtures.

Tests run against a throwaway SQLite file (aiosqlite) and an in-memory
stand-in for the Redis client, so no external services are needed.
"""

import fnmatch

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from redis.exceptions import ConnectionError as RedisConnectionError

from taskboard.cache.layer import CacheLayer, get_cache
from taskboard.core.config import Settings, get_settings
from taskboard.database import Database, get_session_factory
from taskboard.main import app
from taskboard.repositories.projects import ProjectRepository
from taskboard.repositories.tasks import TaskRepository
from taskboard.services.project_service import ProjectService
from taskboard.services.task_service import TaskService

TEST_JWT_SECRET = "test-secret"
OWNER_ID = "user-alice"
OTHER_USER_ID = "user-bob"


class InMemoryRedis:
    """The subset of the redis.asyncio client the cache layer calls."""

    def __init__(self):
        self.store = {}
        self.expiry = {}
        self.down = False
        self.used_memory = 1024 * 1024
        self.maxmemory = 0

    def _check(self):
        if self.down:
            raise RedisConnectionError("Connection refused")

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        self.expiry[key] = ex
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    async def scan(self, cursor=0, match=None, count=None):
        self._check()
        keys = [k for k in self.store if match is None or fnmatch.fnmatchcase(k, match)]
        return 0, keys

    async def info(self, section=None):
        self._check()
        return {
            "used_memory": self.used_memory,
            "maxmemory": self.maxmemory,
            "maxmemory_policy": "allkeys-lru",
        }

    async def aclose(self):
        return None


def make_token(user_id: str, secret: str = TEST_JWT_SECRET) -> str:
    return jwt.encode({"sub": user_id}, secret, algorithm="HS256")


def auth_headers(user_id: str = OWNER_ID, **extra) -> dict:
    headers = {"Authorization": f"Bearer {make_token(user_id)}"}
    headers.update(extra)
    return headers


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'taskboard.db'}",
        jwt_secret=TEST_JWT_SECRET,
        redis_dsn="redis://localhost:6379/15",
    )


@pytest.fixture
async def database(settings):
    database = Database()
    database.connect(settings.database_url, echo=False)
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
async def cache(settings, fake_redis):
    cache = CacheLayer(settings=settings, redis=fake_redis)
    await cache.init_cache()
    yield cache
    await cache.close()


@pytest.fixture
def project_repo(database, cache, settings):
    return ProjectRepository(database.sessions, cache, settings)


@pytest.fixture
def task_repo(database, cache, settings):
    return TaskRepository(database.sessions, cache, settings)


@pytest.fixture
def project_service(project_repo, task_repo):
    return ProjectService(project_repo, task_repo)


@pytest.fixture
def task_service(project_repo, task_repo):
    return TaskService(project_repo, task_repo)


@pytest.fixture
async def client(settings, database, cache):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_session_factory] = lambda: database.sessions
    app.dependency_overrides[get_cache] = lambda: cache

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
