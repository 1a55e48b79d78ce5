"""Test configuration and fixtures."""

import os

# Settings and the module-level engine are built at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from datetime import date, datetime  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from venue_reservations.core.clock import FrozenClock  # noqa: E402
from venue_reservations.core.config import Settings  # noqa: E402
from venue_reservations.core.database import Base  # noqa: E402
from venue_reservations.core.dependencies import (  # noqa: E402
    get_clock,
    get_db,
    get_payment_gateway,
    get_session_factory,
    get_settings,
)
from venue_reservations.models import *  # noqa: F403,E402 - Import all models
from venue_reservations.models import Resource, ResourceKind  # noqa: E402
from venue_reservations.services.payment_gateway import MockPaymentGateway  # noqa: E402

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# 2025-05-20 08:00 UTC; every scenario date below lies after it
TEST_NOW = datetime(2025, 5, 20, 8, 0, 0)


def build_engine(url: str = TEST_DATABASE_URL):
    """Engine for a test database; in-memory databases share one connection."""
    if url.endswith(":memory:"):
        return create_async_engine(
            url,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(url, echo=False, connect_args={"check_same_thread": False})


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = build_engine()

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session_factory(test_engine):
    """Session factory for services that own their transactions."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def test_session(test_session_factory):
    """Create a test database session."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def frozen_clock():
    """Clock pinned to TEST_NOW with the venue on UTC."""
    return FrozenClock(TEST_NOW, timezone_name="UTC")


@pytest.fixture
def test_settings():
    """Settings with the defaults the scenarios are written against."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        environment="test",
        venue_timezone="UTC",
        scheduler_enabled=False,
        scheduler_retry_backoff_seconds=0,
        hold_ttl_seconds=180,
    )


@pytest.fixture
def mock_gateway():
    return MockPaymentGateway()


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session, test_session_factory, frozen_clock, test_settings, mock_gateway):
    """Create the FastAPI application wired to the test database and clock."""
    from venue_reservations.main import create_app

    app = create_app()
    app.state.payment_gateway = mock_gateway

    # Override dependencies
    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: test_session_factory
    app.dependency_overrides[get_clock] = lambda: frozen_clock
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_payment_gateway] = lambda: mock_gateway

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


RESOURCE_DEFAULTS = {
    ResourceKind.ROOM: {"name": "Deluxe Room 101", "min_guests": 1, "max_guests": 3, "member_price": 8000, "guest_price": 12000},
    ResourceKind.HALL: {"name": "Banquet Hall", "min_guests": 50, "max_guests": 500, "member_price": 150000, "guest_price": 200000},
    ResourceKind.LAWN: {"name": "Main Lawn", "min_guests": 50, "max_guests": 200, "member_price": 100000, "guest_price": 140000},
    ResourceKind.PHOTOSHOOT: {"name": "Garden Photoshoot", "min_guests": 0, "max_guests": 10, "member_price": 15000, "guest_price": 20000},
}


@pytest.fixture
def make_resource(test_session):
    """Insert a resource of a kind, with catalog defaults overridable per test."""

    async def _make(kind: ResourceKind, **overrides) -> Resource:
        fields = {
            "kind": kind.value,
            "currency": "PKR",
            "is_active": True,
            "is_out_of_service": False,
            "is_reserved": False,
            **RESOURCE_DEFAULTS[kind],
            **overrides,
        }
        resource = Resource(**fields)
        test_session.add(resource)
        await test_session.commit()
        return resource

    return _make


@pytest.fixture
def add_records(test_session):
    """Insert arbitrary model instances and commit."""

    async def _add(*records):
        test_session.add_all(records)
        await test_session.commit()
        return records

    return _add


@pytest.fixture
def lawn_maintenance_window():
    """Maintenance window from the lawn scenario: June 1st to 10th inclusive."""
    return {"start_date": date(2025, 6, 1), "end_date": date(2025, 6, 10), "reason": "Re-turfing"}
