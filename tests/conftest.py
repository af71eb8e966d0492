"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import hashlib
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

from backend.benefits.provider import ProviderBatchResult, get_disbursement_provider
from backend.common.constants import (
    EmploymentStatus,
    EmploymentType,
    ProviderStatus,
    UserRole,
)
from backend.common.exceptions import DisbursementProviderException
from backend.config import settings
from backend.database import Base, get_db
from backend.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import backend.auth.models  # noqa: F401
import backend.benefits.models  # noqa: F401
import backend.common.audit  # noqa: F401
import backend.core_hr.models  # noqa: F401
import backend.notifications.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT/BLOB ───────────

from sqlalchemy.dialects.postgresql import INET, JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(INET, "sqlite")
def _inet_sqlite(element, compiler, **kw):
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


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and gen_random_uuid() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "uuid_generate_v4", 0, lambda: str(uuid.uuid4()),
    )
    dbapi_conn.create_function(
        "gen_random_uuid", 0, lambda: str(uuid.uuid4()),
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
    from backend.common.rate_limit import limiter

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


# ── Fake disbursement provider ──────────────────────────────────────

class FakeDisbursementProvider:
    """Records every call; can be told to fail or to report a status."""

    def __init__(self) -> None:
        self.submissions: list[dict] = []
        self.status_queries: list[str] = []
        self.fail_with: Optional[str] = None
        self.batch_status = ProviderStatus.processing
        self._counter = 0

    async def submit_batch(self, provider_batch_id, total_amount, employee_count, items=None):
        self.submissions.append({
            "provider_batch_id": provider_batch_id,
            "total_amount": total_amount,
            "employee_count": employee_count,
            "items": items or [],
        })
        if self.fail_with:
            raise DisbursementProviderException(self.fail_with, reference=provider_batch_id)
        self._counter += 1
        reference = f"FAKE-{self._counter:04d}"
        return ProviderBatchResult(
            reference=reference,
            status=ProviderStatus.processing,
            raw={"reference": reference, "status": "Processing"},
        )

    async def get_batch_status(self, reference):
        self.status_queries.append(reference)
        if self.fail_with:
            raise DisbursementProviderException(self.fail_with, reference=reference)
        return ProviderBatchResult(
            reference=reference,
            status=self.batch_status,
            raw={"reference": reference, "status": self.batch_status.value},
        )


@pytest.fixture
def fake_provider() -> FakeDisbursementProvider:
    return FakeDisbursementProvider()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(fake_provider):
    """Create a fresh app instance with DB and provider dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_disbursement_provider] = lambda: fake_provider
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


# ── Model factories ─────────────────────────────────────────────────

def _make_department(
    *,
    name: str = "Operations",
    code: str = "OPS",
) -> dict:
    return dict(
        id=uuid.uuid4(),
        name=name,
        code=code,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )


def _make_employee(
    *,
    email: Optional[str] = None,
    first_name: str = "Test",
    last_name: str = "User",
    department_id: Optional[uuid.UUID] = None,
    employment_type: EmploymentType = EmploymentType.clt,
    employment_status: EmploymentStatus = EmploymentStatus.active,
    is_active: bool = True,
) -> dict:
    suffix = uuid.uuid4().hex[:6]
    return dict(
        id=uuid.uuid4(),
        employee_code=f"BR-{suffix.upper()}",
        first_name=first_name,
        last_name=last_name,
        email=email or f"{first_name.lower()}.{suffix}@empresa.com.br",
        date_of_joining=date(2024, 1, 15),
        employment_type=employment_type,
        employment_status=employment_status,
        department_id=department_id,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


def _make_benefit_config(
    employee_id: uuid.UUID,
    *,
    vr_enabled: bool = True,
    vr_daily_value: str = "25.00",
    vr_business_days_default: int = 22,
    vr_include_saturdays: bool = False,
    vt_enabled: bool = True,
    vt_fixed_monthly_amount: str = "300.00",
    vt_daily_value: str = "0.00",
    mobility_enabled: bool = False,
    mobility_monthly_value: str = "0.00",
) -> dict:
    return dict(
        id=uuid.uuid4(),
        employee_id=employee_id,
        vr_enabled=vr_enabled,
        vr_daily_value=Decimal(vr_daily_value),
        vr_business_days_default=vr_business_days_default,
        vr_include_saturdays=vr_include_saturdays,
        vt_enabled=vt_enabled,
        vt_fixed_monthly_amount=Decimal(vt_fixed_monthly_amount),
        vt_daily_value=Decimal(vt_daily_value),
        mobility_enabled=mobility_enabled,
        mobility_monthly_value=Decimal(mobility_monthly_value),
    )


async def seed_employee(
    db: AsyncSession,
    *,
    config: Optional[dict] = None,
    with_config: bool = True,
    **employee_kwargs,
):
    """Insert an employee (and, by default, a benefit config) and commit."""
    from backend.core_hr.models import Employee, EmployeeBenefitConfig

    emp = Employee(**_make_employee(**employee_kwargs))
    db.add(emp)
    await db.flush()
    if with_config:
        db.add(EmployeeBenefitConfig(**_make_benefit_config(emp.id, **(config or {}))))
    await db.commit()
    return emp


@pytest.fixture
async def test_department(db) -> dict:
    from backend.core_hr.models import Department

    data = _make_department()
    db.add(Department(**data))
    await db.commit()
    return data


@pytest.fixture
async def test_employee(db, test_department):
    """An active CLT employee: VR 25/day × 22 days, VT fixed 300, no mobility."""
    return await seed_employee(
        db, first_name="Ana", last_name="Souza", department_id=test_department["id"],
    )


@pytest.fixture
async def hr_user(db, test_department):
    """The HR admin acting in API tests (no benefit config)."""
    return await seed_employee(
        db,
        first_name="Helena",
        last_name="RH",
        department_id=test_department["id"],
        with_config=False,
    )


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
        exp = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS)
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


async def make_auth_headers(
    db: AsyncSession,
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
) -> dict[str, str]:
    """Mint a token and persist the matching session row."""
    from backend.auth.models import UserSession

    token = create_access_token(employee_id, role=role)
    db.add(UserSession(
        id=uuid.uuid4(),
        employee_id=employee_id,
        token_hash=hashlib.sha256(token.encode()).hexdigest(),
        expires_at=datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS),
        is_revoked=False,
        created_at=datetime.now(timezone.utc),
    ))
    await db.commit()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def hr_headers(db, hr_user) -> dict[str, str]:
    return await make_auth_headers(db, hr_user.id, UserRole.hr_admin)


@pytest.fixture
async def employee_headers(db, test_employee) -> dict[str, str]:
    return await make_auth_headers(db, test_employee.id, UserRole.employee)
