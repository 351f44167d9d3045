"""
Pytest configuration and shared fixtures for testing.
"""
import os
from pathlib import Path

# Settings and the engine read the environment at import time
_TEST_DB = Path(__file__).parent / "test.db"
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DB}")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("DB_CREATE_ALL", "false")
os.environ.setdefault("DEBUG", "false")

from contextlib import asynccontextmanager  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from proctor.core.config import settings  # noqa: E402
from proctor.main import app  # noqa: E402
from proctor.models import (  # noqa: E402
    Base,
    Question,
    QuestionType,
    SessionModule,
    SessionParticipant,
    ParticipantStatus,
    SessionStatus,
    TestModule,
    TestSession,
    User,
    get_db,
)


@asynccontextmanager
async def _test_lifespan(app):
    """No-op lifespan for tests.

    Skips error tracking initialization and table creation.
    """
    yield


app.router.lifespan_context = _test_lifespan


ASYNC_SQLALCHEMY_DATABASE_URL = f"sqlite+aiosqlite:///{_TEST_DB}"

async_test_engine = create_async_engine(
    ASYNC_SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
AsyncTestingSessionLocal = async_sessionmaker(
    async_test_engine, class_=AsyncSession, expire_on_commit=False
)

# Fixed reference instant for state-machine tests: 2024-03-04 09:00 UTC
SESSION_DAY = datetime(2024, 3, 4, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    """A UTC time on SESSION_DAY."""
    return SESSION_DAY.replace(hour=hour, minute=minute, second=second)


@pytest.fixture(scope="function")
async def async_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh async database session for each test.
    """
    async with async_test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncTestingSessionLocal() as session:
        yield session

    async with async_test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(scope="function")
async def async_client(
    async_db_session: AsyncSession,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async test client with async database dependency override.
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield async_db_session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def admin_headers():
    """
    Create headers with valid admin token for admin endpoints.
    """
    return {"X-Admin-Token": settings.ADMIN_TOKEN}


@pytest.fixture
async def test_user(async_db_session):
    """Create a user in the async database."""
    user = User(email="participant@example.com", name="Test Participant")
    async_db_session.add(user)
    await async_db_session.commit()
    await async_db_session.refresh(user)
    return user


@pytest.fixture
def make_user(async_db_session):
    """Factory for additional users."""

    async def _make(email: str, name: str = "Participant") -> User:
        user = User(email=email, name=name)
        async_db_session.add(user)
        await async_db_session.commit()
        await async_db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_test_module(async_db_session):
    """Factory for a test module with multiple-choice questions answered "A"."""

    async def _make(
        name: str = "Numerical Reasoning",
        question_count: int = 10,
        time_limit_seconds: int = 1800,
        passing_score: float | None = None,
    ) -> TestModule:
        test = TestModule(
            name=name,
            module_type="cognitive",
            time_limit_seconds=time_limit_seconds,
            total_questions=question_count,
            passing_score=passing_score,
        )
        async_db_session.add(test)
        await async_db_session.flush()
        for index in range(question_count):
            async_db_session.add(
                Question(
                    test_id=test.id,
                    question_type=QuestionType.MULTIPLE_CHOICE,
                    question_text=f"Question {index + 1}",
                    correct_answer="A",
                    options=[
                        {"value": "A", "label": "First"},
                        {"value": "B", "label": "Second"},
                    ],
                    sequence=index,
                )
            )
        await async_db_session.commit()
        await async_db_session.refresh(test)
        return test

    return _make


@pytest.fixture
def make_session(async_db_session):
    """Factory for sessions with scheduled modules."""

    async def _make(
        start_time: datetime,
        end_time: datetime,
        status: SessionStatus = SessionStatus.ACTIVE,
        modules: tuple[TestModule, ...] = (),
        optional_modules: tuple[TestModule, ...] = (),
        **kwargs,
    ) -> TestSession:
        session = TestSession(
            session_name=kwargs.pop("session_name", "Morning assessment"),
            start_time=start_time,
            end_time=end_time,
            status=status,
            **kwargs,
        )
        async_db_session.add(session)
        await async_db_session.flush()
        for sequence, test in enumerate(modules):
            async_db_session.add(
                SessionModule(session_id=session.id, test_id=test.id, sequence=sequence)
            )
        for offset, test in enumerate(optional_modules, start=len(modules)):
            async_db_session.add(
                SessionModule(
                    session_id=session.id,
                    test_id=test.id,
                    sequence=offset,
                    is_required=False,
                )
            )
        await async_db_session.commit()
        await async_db_session.refresh(session)
        return session

    return _make


@pytest.fixture
def make_participant(async_db_session):
    """Factory for participant rows in a given status."""

    async def _make(
        session: TestSession,
        user: User,
        status: ParticipantStatus = ParticipantStatus.REGISTERED,
        registered_at: datetime | None = None,
    ) -> SessionParticipant:
        participant = SessionParticipant(
            session_id=session.id,
            user_id=user.id,
            status=status,
            registered_at=registered_at or session.start_time,
        )
        async_db_session.add(participant)
        await async_db_session.commit()
        await async_db_session.refresh(participant)
        return participant

    return _make


@pytest.fixture
async def test_module(make_test_module):
    """A ten-question module with a 30-minute limit."""
    return await make_test_module()


@pytest.fixture
async def morning_session(make_session, test_module):
    """Active session from 09:00 to 11:00 on SESSION_DAY with one module."""
    return await make_session(at(9), at(11), modules=(test_module,))


@pytest.fixture
async def live_window_session(make_session, test_module):
    """Active session whose window contains the real current time."""
    now = datetime.now(timezone.utc)
    return await make_session(
        now - timedelta(minutes=10),
        now + timedelta(hours=2),
        modules=(test_module,),
        allow_late_entry=True,
    )
