import os
from collections.abc import AsyncGenerator, Callable
from datetime import timedelta
from typing import Any

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Load environment variables from .env file
load_dotenv()

# Settings are read at import time; tests never need a real Postgres or Redis
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./reminder_service.db")
os.environ.setdefault("SERVICE_TOKEN", "test-service-token")
os.environ.setdefault("LOG_FORMAT", "console")

from reminder_service.config import settings  # noqa: E402
from reminder_service.database import build_session_factory, get_db  # noqa: E402
from reminder_service.dependencies import get_job_queue  # noqa: E402
from reminder_service.main import app  # noqa: E402
from reminder_service.models import metadata  # noqa: E402


class FakeJobQueue:
    """In-memory job queue that refuses duplicate job ids like arq does."""

    def __init__(self) -> None:
        self.jobs: dict[str, dict[str, Any]] = {}
        self.submissions: list[str] = []

    async def submit(
        self,
        *,
        queue_name: str,
        job_id: str,
        payload: dict[str, Any],
        defer_by: timedelta,
    ) -> bool:
        self.submissions.append(job_id)
        if job_id in self.jobs:
            return False
        self.jobs[job_id] = {"queue_name": queue_name, "payload": payload, "defer_by": defer_by}
        return True


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine so separate sessions see each other's commits."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'reminders.db'}",
        poolclass=NullPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def job_queue() -> FakeJobQueue:
    return FakeJobQueue()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    job_queue: FakeJobQueue,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    async def override_get_job_queue() -> FakeJobQueue:
        return job_queue

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_job_queue] = override_get_job_queue

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    """Bearer headers carrying the configured service token."""
    return {"Authorization": f"Bearer {settings.service_token}"}


@pytest.fixture
def make_event() -> Callable[..., dict]:
    """Build an appointment event body; keyword arguments override fields."""

    def _make(**overrides: Any) -> dict:
        patient = {
            "id": "pat-1",
            "tz": "Europe/Berlin",
            "channelPreference": "email",
            "email": "patient@example.com",
        }
        patient.update(overrides.pop("patient", {}))
        event = {
            "type": "appointment.created",
            "appointmentId": "apt-1",
            "version": 1,
            "clinicId": "clinic-1",
            "patient": patient,
            "startAt": "2030-06-12T15:00:00+02:00",
        }
        event.update(overrides)
        return event

    return _make
