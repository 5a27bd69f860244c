"""
Shared fixtures.

Tests run against in-memory SQLite through aiosqlite. Outbound webhooks go
through httpx.MockTransport, the API through httpx.ASGITransport.
"""
import os

# Must be set before leadflow.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("AUTOMATION_DISPATCHER_ENABLED", "false")
os.environ.setdefault("SENTRY_DSN", "")

from datetime import timedelta

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from leadflow.database import get_db
from leadflow.models import AutomationEvent, AutomationEventStatus, Base, Lead, Setting
from leadflow.models.base import utcnow
from leadflow.models.setting import WEBHOOK_TARGET_URL_KEY
from leadflow.services.jwt_service import JWTService
from leadflow.services.rate_limiter import rate_limiter

WEBHOOK_URL = "https://hooks.example.com/leadflow"


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def now():
    return utcnow()


def make_lead(**overrides) -> Lead:
    values = {
        "first_name": "Dana",
        "last_name": "Reyes",
        "email": "dana@example.com",
        "phone": "555-0100",
        "source": "web",
    }
    values.update(overrides)
    return Lead(**values)


def make_event(lead: Lead, created_at, **overrides) -> AutomationEvent:
    values = {
        "lead_id": lead.id,
        "event_type": "StatusChanged",
        "payload": '{"eventType": "StatusChanged"}',
        "target_url": WEBHOOK_URL,
        "status": AutomationEventStatus.PENDING.value,
        "attempts": 0,
        "scheduled_at": created_at,
        "created_at": created_at,
    }
    values.update(overrides)
    return AutomationEvent(**values)


@pytest_asyncio.fixture
async def lead(db) -> Lead:
    lead = make_lead()
    db.add(lead)
    await db.commit()
    return lead


@pytest_asyncio.fixture
async def add_event(db, lead, now):
    """Factory: persist an automation event for the shared lead."""
    async def _add_event(**overrides) -> AutomationEvent:
        created_at = overrides.pop("created_at", now - timedelta(minutes=1))
        automation_event = make_event(lead, created_at, **overrides)
        db.add(automation_event)
        await db.commit()
        return automation_event
    return _add_event


async def configure_webhook(session: AsyncSession, url: str = WEBHOOK_URL) -> None:
    session.add(Setting(key=WEBHOOK_TARGET_URL_KEY, value=url))
    await session.commit()


class RecordingHandler:
    """httpx.MockTransport handler answering with fixed status codes, recording requests."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code)


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def auth_headers(role: str = "Admin", email: str = "admin@example.com") -> dict:
    token = JWTService().create_token("user-1", email, role)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def api(session_maker, monkeypatch):
    """HTTP client for the app, wired to the test database with rate limits open."""
    from leadflow.main import app

    async def override_get_db():
        async with session_maker() as session:
            yield session

    async def always_allowed(*args, **kwargs):
        return True, 0

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(rate_limiter, "is_allowed", always_allowed)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
