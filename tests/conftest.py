"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from hr_portal.common.constants import RequestStatus, UserRole
from hr_portal.config import settings
from hr_portal.database import Base, get_db
from hr_portal.main import create_app

# Import ALL model modules so every table is registered on Base.metadata
import hr_portal.common.audit  # noqa: F401
import hr_portal.core_hr.models  # noqa: F401
import hr_portal.leave.models  # noqa: F401
import hr_portal.notifications.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT/CHAR ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────
# One engine per test: the aiosqlite connection is bound to the test's loop.

TEST_DATABASE_URL = "sqlite+aiosqlite://"


def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() as a SQLite custom function."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Create all tables before each test, drop after."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine.sync_engine, "connect", _register_sqlite_functions)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from hr_portal.common.rate_limit import limiter

    limiter.reset()
    yield


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(session_factory):
    """Create a fresh app instance with DB dependency overridden."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────
# Factories commit so that rows are visible to the app's own sessions.


async def make_department(db: AsyncSession, name: str = "Engineering", supervisors=()):
    from hr_portal.core_hr.models import Department, department_supervisors

    department = Department(id=uuid.uuid4(), name=name)
    db.add(department)
    await db.flush()
    for supervisor in supervisors:
        await db.execute(
            department_supervisors.insert().values(
                department_id=department.id, employee_id=supervisor.id,
            )
        )
    await db.commit()
    return department


async def make_employee(
    db: AsyncSession,
    *,
    name: str = "Test User",
    email: Optional[str] = None,
    role: UserRole = UserRole.worker,
    department_id: Optional[uuid.UUID] = None,
    days_available: str = "10",
    overtime_hours: str = "0",
):
    from hr_portal.core_hr.models import Employee

    employee = Employee(
        id=uuid.uuid4(),
        name=name,
        email=email or f"{uuid.uuid4().hex[:8]}@example.com",
        role=role,
        department_id=department_id,
        days_available=Decimal(days_available),
        overtime_hours=Decimal(overtime_hours),
        is_active=True,
    )
    db.add(employee)
    await db.commit()
    return employee


async def make_request(
    db: AsyncSession,
    employee,
    *,
    type_id: str = "vacation",
    start: date = date(2024, 3, 4),
    end: Optional[date] = None,
    hours: Optional[str] = None,
    status: RequestStatus = RequestStatus.pending,
    consumed: str = "0",
):
    """Insert a request row directly, bypassing the lifecycle engine."""
    from hr_portal.leave.models import Request

    request = Request(
        id=uuid.uuid4(),
        employee_id=employee.id,
        type_id=type_id,
        label=type_id,
        start_date=start,
        end_date=end,
        hours=Decimal(hours) if hours is not None else None,
        status=status,
        consumed_hours=Decimal(consumed),
    )
    db.add(request)
    await db.commit()
    return request


@pytest.fixture
async def department(db):
    return await make_department(db)


@pytest.fixture
async def worker(db, department):
    return await make_employee(db, name="Ana Worker", department_id=department.id)


@pytest.fixture
async def supervisor(db, department):
    from hr_portal.core_hr.models import department_supervisors

    employee = await make_employee(
        db, name="Sam Supervisor", role=UserRole.supervisor, department_id=department.id,
    )
    await db.execute(
        department_supervisors.insert().values(
            department_id=department.id, employee_id=employee.id,
        )
    )
    await db.commit()
    return employee


@pytest.fixture
async def admin(db):
    return await make_employee(db, name="Ada Admin", role=UserRole.admin, days_available="0")


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    expired: bool = False,
    token_type: str = "access",
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(employee_id),
        "type": token_type,
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(employee) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee.id)}"}
