"""Test fixtures — a throwaway database and a fresh app per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own SQLite file (or FIREMARKET_TEST_DATABASE_URL)
   with the schema created from the models.
2. get_db is overridden to hand every request its OWN session from the
   test engine, like production does. That matters here: the bid
   lifecycle's race guard is only meaningful across separate sessions.
3. get_current_user is overridden with a switchable `actor`, so a test
   can act as the ad owner, then as a supplier, without minting tokens.
4. get_dispatcher is overridden with a recorder, so tests assert on
   exactly which pushes a request produced.
"""

import os
import uuid
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from firemarket.auth.dependencies import CurrentIdentity, get_current_user
from firemarket.db.engine import create_tables, get_db
from firemarket.db.models import Base
from firemarket.main import create_app
from firemarket.realtime.dispatcher import NotificationDispatcher
from firemarket.realtime.hub import get_dispatcher

OWNER = uuid.UUID("00000000-0000-0000-0000-00000000000a")
SUPPLIER_A = uuid.UUID("00000000-0000-0000-0000-0000000000b1")
SUPPLIER_B = uuid.UUID("00000000-0000-0000-0000-0000000000b2")
SUPPLIER_C = uuid.UUID("00000000-0000-0000-0000-0000000000b3")
ADMIN = uuid.UUID("00000000-0000-0000-0000-0000000000ad")


def is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


# ─── Fakes ───────────────────────────────────────────────


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher double: remembers every push instead of delivering it."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []

    async def send_to_user(self, user_id, event_type, data):
        self.sent.append(
            {"mode": "user", "target": str(user_id), "type": event_type, "data": data}
        )
        return 1

    async def send_to_topic(self, topic, event_type, data):
        self.sent.append(
            {"mode": "topic", "target": str(topic), "type": event_type, "data": data}
        )
        return 1

    async def broadcast(self, event_type, data, exclude_user_id=None):
        self.sent.append({
            "mode": "broadcast",
            "target": None,
            "exclude": exclude_user_id,
            "type": event_type,
            "data": data,
        })
        return 1

    def to(self, user_id, event_type: Optional[str] = None) -> list[dict]:
        return [
            s for s in self.sent
            if s["target"] == str(user_id)
            and (event_type is None or s["type"] == event_type)
        ]


class Actor:
    """Who the overridden get_current_user says is calling."""

    def __init__(self, user_id: uuid.UUID = OWNER, role: str = "user"):
        self.identity = CurrentIdentity(user_id=user_id, role=role)

    def use(self, user_id: uuid.UUID, role: str = "user") -> "Actor":
        self.identity = CurrentIdentity(user_id=user_id, role=role)
        return self


# ─── Database ────────────────────────────────────────────


@pytest_asyncio.fixture()
async def engine(tmp_path):
    """Fresh schema per test. NullPool: every session opens its own connection."""
    url = os.environ.get(
        "FIREMARKET_TEST_DATABASE_URL",
        f"sqlite+aiosqlite:///{tmp_path / 'firemarket-test.db'}",
    )
    eng = create_async_engine(url, poolclass=NullPool)
    if not is_sqlite(url):
        async with eng.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """A session for the test body itself (setup + assertions)."""
    async with session_factory() as session:
        yield session


# ─── HTTP client ─────────────────────────────────────────


@pytest.fixture()
def actor():
    return Actor()


@pytest.fixture()
def recorder():
    return RecordingDispatcher()


@pytest.fixture()
def app(session_factory, actor, recorder):
    """A new app (and realtime hub) per test, wired to the test database."""
    application = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_current_user] = lambda: actor.identity
    application.dependency_overrides[get_dispatcher] = lambda: recorder
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture()
async def unauthenticated_client(session_factory):
    """HTTP client WITHOUT the auth override — exercises real JWT checks."""
    application = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=application)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    application.dependency_overrides.clear()
