"""Shared test fixtures — async DB, client, auth helpers, org factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("LEAVE_REMINDER_CRON_SECRET", "test-cron-secret")

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Iterable, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leave_engine.common.constants import NotificationKind, UserRole
from leave_engine.config import settings
from leave_engine.database import Base, get_db
from leave_engine.leave.router import get_notification_dispatcher, get_reminder_dispatcher
from leave_engine.leave.service import LeaveService
from leave_engine.main import create_app
from leave_engine.org.models import Department, Employee

# Import ALL model modules so every table is registered on Base.metadata
import leave_engine.common.audit  # noqa: F401
import leave_engine.leave.models  # noqa: F401
import leave_engine.notifications.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT ────────────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from leave_engine.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Notification double ─────────────────────────────────────────────

@dataclass
class SentNotification:
    employee_ids: list[uuid.UUID]
    kind: NotificationKind
    payload: dict[str, Any]


class RecordingDispatcher:
    """Collects notifications instead of delivering them.

    ``fail_for`` makes ``notify`` raise for the listed recipients.
    """

    def __init__(self, fail_for: Iterable[uuid.UUID] = ()) -> None:
        self.sent: list[SentNotification] = []
        self.fail_for = set(fail_for)

    async def notify(self, employee_ids, kind, payload) -> None:
        ids = list(employee_ids)
        if self.fail_for.intersection(ids):
            raise RuntimeError("mail relay unavailable")
        self.sent.append(SentNotification(ids, kind, dict(payload)))

    def recipients(self, kind: NotificationKind) -> list[uuid.UUID]:
        return [emp_id for n in self.sent if n.kind == kind for emp_id in n.employee_ids]

    def kinds(self) -> list[NotificationKind]:
        return [n.kind for n in self.sent]


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(dispatcher):
    """Create a fresh app instance with DB and notification dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    application.dependency_overrides[get_reminder_dispatcher] = lambda: dispatcher
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
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


@pytest.fixture
def service(db, dispatcher) -> LeaveService:
    """Leave service on the test session with the overage policy enabled."""
    return LeaveService(db, dispatcher=dispatcher, allow_overage=True)


# ── Org factories ───────────────────────────────────────────────────

async def make_department(
    db: AsyncSession, *, name: str = "Engineering", code: str = "ENG",
) -> Department:
    dept = Department(id=uuid.uuid4(), name=name, code=code, is_active=True)
    db.add(dept)
    await db.flush()
    return dept


async def make_employee(
    db: AsyncSession,
    *,
    first_name: str = "Test",
    last_name: str = "User",
    department: Optional[Department] = None,
    manager: Optional[Employee] = None,
    self_managed: bool = False,
    is_active: bool = True,
) -> Employee:
    emp_id = uuid.uuid4()
    emp = Employee(
        id=emp_id,
        employee_code=f"CF-{emp_id.hex[:6].upper()}",
        first_name=first_name,
        last_name=last_name,
        display_name=None,
        email=f"{first_name.lower()}.{emp_id.hex[:6]}@example.com",
        department_id=department.id if department else None,
        reporting_manager_id=emp_id if self_managed else (manager.id if manager else None),
        is_active=is_active,
    )
    db.add(emp)
    await db.flush()
    return emp


@dataclass
class Org:
    engineering: Department
    operations: Department
    hr: Employee
    lead: Employee
    employee: Employee
    solo: Employee
    ops_member: Employee


@pytest.fixture
async def org(db) -> Org:
    """A small org chart, committed so the API's own sessions can see it.

    ``employee`` reports to ``lead``; ``solo`` is their own manager (no lead
    track); ``ops_member`` sits in another department.
    """
    engineering = await make_department(db)
    operations = await make_department(db, name="Operations", code="OPS")
    hr = await make_employee(db, first_name="Hana", last_name="Rao", department=operations, self_managed=True)
    lead = await make_employee(db, first_name="Leo", last_name="Das", department=engineering, self_managed=True)
    employee = await make_employee(db, first_name="Emma", last_name="Iyer", department=engineering, manager=lead)
    solo = await make_employee(db, first_name="Sol", last_name="Khan", department=engineering, self_managed=True)
    ops_member = await make_employee(db, first_name="Omar", last_name="Shah", department=operations, manager=hr)
    await db.commit()
    return Org(engineering, operations, hr, lead, employee, solo, ops_member)


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(employee: Employee, role: UserRole = UserRole.employee) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee.id, role)}"}
