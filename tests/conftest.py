"""Test fixtures — a throwaway SQLite database per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own database file under tmp_path, with the schema
   created from the ORM models (no migrations, no shared state)
2. The app's get_db is overridden to open a NEW session per request from
   that file, exactly like production. Sessions never share an identity
   map, so stale-read and race tests behave like two separate requests
3. A fresh ChannelBroker per test replaces the process singleton, so no
   room membership leaks between tests

Auth is real: users are registered through the service and requests carry
a genuine JWT, so route-level role and participant checks all run.
"""

import os
import tempfile
import uuid

# Must be set before helpmatch.config is imported anywhere
os.environ.setdefault("HELPMATCH_ENVIRONMENT", "test")
os.environ.setdefault(
    "HELPMATCH_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'helpmatch-test.db')}",
)

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from helpmatch.auth.jwt import create_access_token
from helpmatch.config import settings
from helpmatch.db.engine import get_db, get_session_factory
from helpmatch.db.models import Base
from helpmatch.main import app
from helpmatch.realtime.broker import ChannelBroker, get_broker
from helpmatch.services.user_service import UserService

# Minimum bcrypt cost keeps registration fast
settings.bcrypt_rounds = 4


def auth_headers(user) -> dict:
    """Bearer header for a registered user."""
    token = create_access_token(str(user.id), user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture()
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'helpmatch.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """A session for direct service calls and assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture()
def broker():
    return ChannelBroker(instance_id="test")


@pytest_asyncio.fixture()
async def client(session_factory, broker):
    """HTTP client with the app's DB and broker pointed at this test's copies."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_broker] = lambda: broker

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def make_user(session_factory):
    """Factory: register a user straight through the service layer."""

    async def _make(role: str = "receiver", name: str | None = None, city: str = "Berlin"):
        suffix = uuid.uuid4().hex[:8]
        async with session_factory() as session:
            return await UserService(session).register(
                email=f"{role}-{suffix}@example.com",
                name=name or f"{role.title()} {suffix}",
                password="password_123",
                role=role,
                city=city,
            )

    return _make


@pytest_asyncio.fixture()
async def receiver(make_user):
    return await make_user("receiver", name="Rita Receiver")


@pytest_asyncio.fixture()
async def helper(make_user):
    return await make_user("helper", name="Hank Helper")


@pytest_asyncio.fixture()
async def stranger(make_user):
    """A helper with no part in the request under test."""
    return await make_user("helper", name="Sam Stranger")


@pytest.fixture()
def headers_for():
    """auth_headers as a fixture, so test modules needn't import conftest."""
    return auth_headers
