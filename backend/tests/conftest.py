"""Shared fixtures: in-memory database, authenticated client, fake judge.

Every test gets a fresh in-memory SQLite database. The caller identity is
the bearer token itself (``Authorization: Bearer host-1`` acts as user
``host-1``), the judge is a local fake, and broadcasts are recorded instead
of being sent to sockets.
"""

import os

# Ensure tests never reach real services
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("GEMINI_API_KEY", "test-fake-key")
os.environ.setdefault("SUPABASE_URL", "http://supabase.invalid")

from typing import Optional

import pytest
from fastapi import Header
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from connection_manager import manager
from database import Base, get_db
from errors import Unauthorized
from judge import get_judge
from main import app
from models import Image
from security import get_current_user_id
from tests.helpers import FakeJudge, create_room, join, ready


@pytest.fixture
async def test_engine():
    # One shared connection, so every session sees the same in-memory database
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def fake_judge():
    return FakeJudge()


@pytest.fixture
def events(monkeypatch):
    """Broadcasts recorded as (channel, event, payload)."""
    recorded = []

    async def record(channel, event, payload):
        recorded.append((channel, event, payload))

    monkeypatch.setattr(manager, "broadcast", record)
    return recorded


@pytest.fixture
async def client(test_session_factory, fake_judge, events):
    """FastAPI test client with DB, identity and judge dependencies overridden."""
    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    async def override_current_user(authorization: Optional[str] = Header(None)) -> str:
        if not authorization or " " not in authorization:
            raise Unauthorized("Unauthorized")
        return authorization.split(" ", 1)[1]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user_id] = override_current_user
    app.dependency_overrides[get_judge] = lambda: fake_judge

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
async def images(test_db):
    pool = [
        Image(id="img-1", url="https://images.test/bicycle.jpg"),
        Image(id="img-2", url="https://images.test/lighthouse.jpg"),
    ]
    test_db.add_all(pool)
    await test_db.commit()
    return pool


@pytest.fixture
async def lobby(client, images):
    """Room with a host and one ready guest, two rounds."""
    room_id = await create_room(client, total_rounds=2)
    await join(client, room_id, "guest-1")
    res = await ready(client, room_id, "guest-1")
    assert res.status_code == 200
    return room_id
