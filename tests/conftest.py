"""Shared pytest fixtures for Capstone Portal tests.

Fixture summary
---------------
engine           : Async SQLite engine on a per-test file with all tables created.
session_factory  : async_sessionmaker bound to ``engine`` (project defaults).
fake_redis       : In-memory stand-in for the handful of Redis commands used.
client           : httpx.AsyncClient against the FastAPI app with DB and Redis overrides.
create_student   : Coroutine factory persisting a Student row.
create_supervisor: Coroutine factory persisting a Supervisor row.
create_project   : Coroutine factory persisting a Project row.
create_application: Coroutine factory persisting an Application row.
fetch            : Coroutine re-reading a row in a fresh session.

Workflow services open their own sessions (one per unit of work and per
retry), so tests use a real database file rather than a rolled-back
session.  Each test gets its own file under ``tmp_path``.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime
from typing import Any, Callable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set required env vars before any application modules are imported so that
# Settings() does not raise a ValidationError during collection.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "DATABASE_URL": "sqlite+aiosqlite:///./capstone_portal_test.db",
    "SECRET_KEY": "test-secret-key-for-tests-only-not-production",
    "REDIS_URL": "redis://localhost:6379/15",
    "EVENTS_ENABLED": "false",
    "LOG_LEVEL": "WARNING",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)

# ---------------------------------------------------------------------------
# Application imports (after env bootstrap)
# ---------------------------------------------------------------------------

from capstone_portal.api.main import app  # noqa: E402
from capstone_portal.config.settings import get_settings  # noqa: E402
from capstone_portal.core.database import Base, build_session_factory  # noqa: E402
from capstone_portal.core.models import (  # noqa: E402
    Application,
    Project,
    Student,
    Supervisor,
)
from tests.factories import (  # noqa: E402
    ApplicationFactory,
    ProjectFactory,
    StudentFactory,
    SupervisorFactory,
)

# Clear the lru_cache so Settings() re-reads from the patched environment.
get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Bearer tokens
# ---------------------------------------------------------------------------


def make_token(uid: uuid.UUID, role: str, email_verified: bool = True) -> str:
    """Sign a bearer token the way the identity provider would."""
    settings = get_settings()
    claims = {"sub": str(uid), "role": role, "email_verified": email_verified}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def auth_headers(uid: uuid.UUID, role: str, email_verified: bool = True) -> dict[str, str]:
    """Return ``Authorization`` headers for a caller with *role*."""
    return {"Authorization": f"Bearer {make_token(uid, role, email_verified)}"}


# ---------------------------------------------------------------------------
# In-memory Redis
# ---------------------------------------------------------------------------


class FakeRedis:
    """Implements the hash, expiry, pub/sub and ping commands the app uses.

    Values are stored as strings, matching a client created with
    ``decode_responses=True``.  Given a *clock*, keys expire like real Redis:
    a key whose TTL has elapsed (``now >= deadline``) is gone.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.hashes: dict[str, dict[str, str]] = {}
        self.ttls_ms: dict[str, int] = {}
        self.published: list[tuple[str, str]] = []
        self._clock = clock
        self._deadlines_ms: dict[str, int] = {}

    def _now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)

    def _evict_expired(self, key: str) -> None:
        deadline = self._deadlines_ms.get(key)
        if self._clock is not None and deadline is not None and self._now_ms() >= deadline:
            self.hashes.pop(key, None)
            self._deadlines_ms.pop(key, None)

    async def hgetall(self, key: str) -> dict[str, str]:
        self._evict_expired(key)
        return dict(self.hashes.get(key, {}))

    async def hset(self, key: str, mapping: Optional[dict[str, Any]] = None) -> int:
        bucket = self.hashes.setdefault(key, {})
        for field, value in (mapping or {}).items():
            bucket[field] = str(value)
        return len(mapping or {})

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        bucket = self.hashes.setdefault(key, {})
        bucket[field] = str(int(bucket.get(field, "0")) + amount)
        return int(bucket[field])

    async def pexpire(self, key: str, ttl_ms: int) -> bool:
        self.ttls_ms[key] = ttl_ms
        if self._clock is not None:
            self._deadlines_ms[key] = self._now_ms() + ttl_ms
        return key in self.hashes

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.hashes.pop(key, None) is not None:
                removed += 1
            self.ttls_ms.pop(key, None)
            self._deadlines_ms.pop(key, None)
        return removed

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 0

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


# ---------------------------------------------------------------------------
# Test database engine and session factory
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a SQLite engine on a fresh file and build every table.

    The engine is created inside the test's event loop so that the
    aiosqlite worker threads belong to it.

    Yields:
        AsyncEngine bound to ``<tmp_path>/capstone.db``.
    """
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'capstone.db'}",
        echo=False,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a sessionmaker bound to the test engine."""
    return build_session_factory(engine)


# ---------------------------------------------------------------------------
# FastAPI test client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: FakeRedis,
) -> AsyncGenerator[AsyncClient, None]:
    """Yield an httpx.AsyncClient against the FastAPI app.

    ``get_session_factory`` points at the test database and ``get_redis``
    yields :class:`FakeRedis`, so every workflow service and the rate
    limiter run without external infrastructure.

    Yields:
        :class:`httpx.AsyncClient` configured for the test app.
    """
    from capstone_portal.api.dependencies import get_redis  # noqa: PLC0415
    from capstone_portal.core.database import get_session_factory  # noqa: PLC0415

    async def _override_get_redis() -> AsyncGenerator[FakeRedis, None]:
        yield fake_redis

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_redis] = _override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------


async def _persist(session_factory: async_sessionmaker[AsyncSession], instance: Any) -> Any:
    async with session_factory() as session:
        async with session.begin():
            session.add(instance)
    return instance


@pytest.fixture
def create_student(session_factory: async_sessionmaker[AsyncSession]):
    async def _create(**overrides: Any) -> Student:
        return await _persist(session_factory, Student(**StudentFactory.build(**overrides)))

    return _create


@pytest.fixture
def create_supervisor(session_factory: async_sessionmaker[AsyncSession]):
    async def _create(**overrides: Any) -> Supervisor:
        return await _persist(
            session_factory, Supervisor(**SupervisorFactory.build(**overrides))
        )

    return _create


@pytest.fixture
def create_project(session_factory: async_sessionmaker[AsyncSession]):
    async def _create(supervisor_id: uuid.UUID, **overrides: Any) -> Project:
        data = ProjectFactory.build(supervisor_id=supervisor_id, **overrides)
        return await _persist(session_factory, Project(**data))

    return _create


@pytest.fixture
def create_application(session_factory: async_sessionmaker[AsyncSession]):
    async def _create(
        student_id: uuid.UUID,
        supervisor_id: uuid.UUID,
        **overrides: Any,
    ) -> Application:
        data = ApplicationFactory.build(
            student_id=student_id, supervisor_id=supervisor_id, **overrides
        )
        return await _persist(session_factory, Application(**data))

    return _create


@pytest.fixture
def fetch(session_factory: async_sessionmaker[AsyncSession]):
    """Re-read a row in a fresh session; returns ``None`` if it is gone."""

    async def _fetch(model: type, row_id: uuid.UUID) -> Any:
        async with session_factory() as session:
            return await session.get(model, row_id)

    return _fetch
