"""
Shared test fixtures for the CrewDesk test suite.

Async throughout (aiosqlite + AsyncSession). The app's ``get_db`` is
swapped for a session bound to one in-memory database per test.
"""

import os
import sys
from datetime import datetime
from typing import AsyncGenerator

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["TIMEZONE_OFFSET"] = "+00:00"

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from crewdesk.api.v1.deps import get_db
from crewdesk.core.permissions import DEFAULT_MATRIX, permission_table
from crewdesk.core.security import create_access_token
from crewdesk.db.base import Base
from crewdesk.main import app
from crewdesk.models.attendance import AttendanceRecord
from crewdesk.models.user import User
from crewdesk.services.attendance_analytics import AttendanceRules, compute_total_hours
from crewdesk.services.permission_store import refresh_permission_table, seed_permissions

# One connection shared by the app and the tests
test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest.fixture
async def setup_db():
    """Create all tables and the built-in roles, drop everything afterwards."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with TestingSessionLocal() as session:
        await seed_permissions(session)
        await refresh_permission_table(session)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # StaticPool keeps one connection; drop it so the next test opens one on its own loop
    await test_engine.dispose()
    permission_table.load(DEFAULT_MATRIX)


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestingSessionLocal() as session:
        yield session


app.dependency_overrides[get_db] = _override_get_db


@pytest.fixture
async def async_client(setup_db) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def db_session(setup_db) -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with TestingSessionLocal() as session:
        yield session


# ── Factories ───────────────────────────────────────────────────────
@pytest.fixture
def make_user(db_session: AsyncSession):
    async def _make(
        email: str,
        role: str = "user",
        full_name: str | None = None,
        department: str | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            email=email,
            hashed_password="pw",  # tests authenticate with tokens, not passwords
            full_name=full_name or email.split("@")[0].title(),
            department=department,
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_record(db_session: AsyncSession):
    async def _make(
        user: User,
        check_in: datetime,
        check_out: datetime | None = None,
        auto_checkout: bool = False,
    ) -> AttendanceRecord:
        record = AttendanceRecord(
            user_id=user.id,
            check_in_time=check_in,
            check_out_time=check_out,
            total_hours=(
                compute_total_hours(check_in, check_out, AttendanceRules()) if check_out else None
            ),
            auto_checkout=auto_checkout,
        )
        db_session.add(record)
        await db_session.commit()
        await db_session.refresh(record)
        return record

    return _make


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
async def admin_user(make_user) -> User:
    return await make_user("admin@example.com", role="admin", full_name="Admin")


@pytest.fixture
async def manager_user(make_user) -> User:
    return await make_user("manager@example.com", role="manager", full_name="Morgan Manager")


@pytest.fixture
async def member_user(make_user) -> User:
    return await make_user(
        "member@example.com", role="user", full_name="Mel Member", department="Engineering"
    )
