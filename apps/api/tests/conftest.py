"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database with a fresh schema per test
- Tenant / staff fixtures and JWT token minting for authenticated tests
- HTTPX AsyncClient against the ASGI app
"""
import os
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Generator

from cryptography.fernet import Fernet

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("FERNET_KEY", Fernet.generate_key().decode())
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("INTERNAL_SECRET", "test-internal-secret")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from app.core.deps import COOKIE_NAME, get_db
from app.core.security import create_session_token
from app.db.base import Base
from app.db.enums import Role
from app.db.models import Staff, Tenant
from app.db.session import SessionLocal, engine
from app.main import app


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Database session on a freshly created schema.

    App code commits freely; the schema is dropped after each test.
    """
    Base.metadata.create_all(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_tenant(db: Session) -> Tenant:
    """Create a test practice."""
    tenant = Tenant(
        id=uuid.uuid4(),
        name="Test Practice",
        timezone="America/New_York",
    )
    db.add(tenant)
    db.flush()
    return tenant


@pytest.fixture(scope="function")
def test_staff(db: Session, test_tenant: Tenant) -> Staff:
    """Create a test staff member in test_tenant."""
    staff = Staff(
        id=uuid.uuid4(),
        tenant_id=test_tenant.id,
        email=f"staff-{uuid.uuid4().hex[:8]}@test.com",
        display_name="Test Clinician",
        role=Role.BUSINESS_ADMIN.value,
        timezone="America/New_York",
        token_version=1,
    )
    db.add(staff)
    db.commit()
    return staff


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    staff: Staff
    tenant: Tenant
    token: str
    cookie_name: str = COOKIE_NAME


@pytest.fixture(scope="function")
def test_auth(test_staff: Staff, test_tenant: Tenant) -> TestAuth:
    """Create JWT token for test staff member."""
    token = create_session_token(
        staff_id=test_staff.id,
        tenant_id=test_tenant.id,
        role=test_staff.role,
        token_version=test_staff.token_version,
    )
    return TestAuth(
        staff=test_staff,
        tenant=test_tenant,
        token=token,
    )


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create unauthenticated AsyncClient for testing public endpoints.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(
    db: Session,
    test_auth: TestAuth
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create authenticated AsyncClient with a bearer session token.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {test_auth.token}"},
    ) as c:
        yield c

    app.dependency_overrides.clear()


# =============================================================================
# Domain Factories
# =============================================================================

@pytest.fixture(scope="function")
def make_series(db: Session, test_tenant: Tenant):
    """Factory for appointment series in test_tenant."""
    from datetime import date, time

    from app.db.models import AppointmentSeries

    def _make(**overrides) -> AppointmentSeries:
        values = dict(
            tenant_id=test_tenant.id,
            rrule="FREQ=WEEKLY;INTERVAL=1",
            start_date=date(2024, 1, 1),
            local_start_time=time(9, 0),
            duration_minutes=50,
            timezone="America/New_York",
            title="Weekly session",
            customer_name="Client A",
            active=True,
        )
        values.update(overrides)
        series = AppointmentSeries(**values)
        db.add(series)
        db.commit()
        return series

    return _make
