"""
Root-level test fixtures shared across all tests.

This module provides:
- Test database setup (async SQLite in-memory)
- Settings and service instances wired to the test database
- A sweep lock that never touches Redis
- Test data factories (technicians, incidents, users, schedules)
"""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from itertools import count
from typing import AsyncGenerator

import pytest
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

import facility_dispatch.models.all  # noqa: F401
from facility_dispatch.config import Settings
from facility_dispatch.models import Base
from facility_dispatch.models.incident import Incident, IncidentSource, IncidentStatus
from facility_dispatch.models.notification import Notification
from facility_dispatch.models.schedule import Schedule, ScheduleStatus
from facility_dispatch.models.technician import Technician
from facility_dispatch.models.user import User, UserRole
from facility_dispatch.services.assignment_engine import AssignmentEngine
from facility_dispatch.services.escalation_sweep import EscalationSweep
from facility_dispatch.services.notification_service import NotificationService

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)

# Fixed evaluation time for deterministic windows
NOW = datetime(2025, 3, 10, 9, 0, 0)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    Create async SQLite in-memory engine for testing.

    Uses StaticPool to ensure same connection is reused within a test.
    Each test gets a fresh database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,  # Set to True for SQL debugging
    )

    # Enable foreign keys for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
async def test_db(test_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """
    Provides async database session for testing.

    Same session options as the application: no autoflush, objects stay
    loaded after commit.
    """
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Default thresholds, no webhook, no API key."""
    return Settings(
        api_key="",
        notification_webhook_url=None,
        sla_minutes=15,
        max_assignments_per_technician_per_day=3,
        max_system_wide_assignments_per_day=15,
    )


@pytest.fixture
def sink(test_settings: Settings) -> NotificationService:
    return NotificationService(test_settings)


@pytest.fixture
def engine(test_settings: Settings, sink: NotificationService) -> AssignmentEngine:
    return AssignmentEngine(settings=test_settings, sink=sink)


class AlwaysAcquiredLock:
    """Sweep lock stand-in: every caller gets to run."""

    def __init__(self):
        self.holds = 0

    @asynccontextmanager
    async def hold(self):
        self.holds += 1
        yield True

    async def close(self) -> None:
        pass


@pytest.fixture
def sweep_lock_stub() -> AlwaysAcquiredLock:
    return AlwaysAcquiredLock()


@pytest.fixture
def sweep(test_settings, engine, sink, sweep_lock_stub) -> EscalationSweep:
    return EscalationSweep(
        settings=test_settings,
        engine=engine,
        sink=sink,
        lock=sweep_lock_stub,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


# ============================================================================
# Test Data Factory Fixtures
# ============================================================================


@pytest.fixture
def technician_factory(test_db: AsyncSession):
    """
    Factory function for creating test technicians.

    created_at increases with every call so directory order is the
    order of creation.

    Usage:
        plumber = await technician_factory(specialization="Plumbing")
    """
    sequence = count()

    async def _create_technician(**kwargs) -> Technician:
        n = next(sequence)
        defaults = {
            "name": f"Technician {n}",
            "email": f"tech{n}@campus.example.edu",
            "specialization": "General",
            "active": True,
            "available": True,
            "current_assignments": 0,
            "max_concurrent": 2,
            "created_at": NOW - timedelta(days=30) + timedelta(seconds=n),
        }
        defaults.update(kwargs)

        technician = Technician(**defaults)
        test_db.add(technician)
        await test_db.commit()
        return technician

    return _create_technician


@pytest.fixture
def incident_factory(test_db: AsyncSession):
    """
    Factory function for creating test incidents.

    Usage:
        incident = await incident_factory(
            location="Block A",
            created_at=NOW - timedelta(minutes=16),
        )
    """

    async def _create_incident(**kwargs) -> Incident:
        defaults = {
            "title": "Test Incident",
            "description": "Test incident description",
            "location": "Block A",
            "category": "water",
            "status": IncidentStatus.NEW,
            "priority": 3,
            "source": IncidentSource.REPORT,
            "created_at": NOW,
            "updated_at": NOW,
            "context": {},
        }
        defaults.update(kwargs)

        incident = Incident(**defaults)
        test_db.add(incident)
        await test_db.commit()
        return incident

    return _create_incident


@pytest.fixture
def user_factory(test_db: AsyncSession):
    sequence = count()

    async def _create_user(**kwargs) -> User:
        n = next(sequence)
        defaults = {
            "name": f"User {n}",
            "email": f"user{n}@campus.example.edu",
            "role": UserRole.REPORTER,
        }
        defaults.update(kwargs)

        user = User(**defaults)
        test_db.add(user)
        await test_db.commit()
        return user

    return _create_user


@pytest.fixture
def schedule_factory(test_db: AsyncSession):
    """
    Factory function for creating schedules directly.

    Bypasses ScheduleStore, so no capacity is reserved.
    """

    async def _create_schedule(technician_id, incident_id, **kwargs) -> Schedule:
        defaults = {
            "technician_id": technician_id,
            "incident_id": incident_id,
            "scheduled_time": NOW + timedelta(hours=1),
            "duration_minutes": 30,
            "status": ScheduleStatus.SCHEDULED,
        }
        defaults.update(kwargs)

        schedule = Schedule(**defaults)
        test_db.add(schedule)
        await test_db.commit()
        return schedule

    return _create_schedule


# ============================================================================
# Utility Fixtures
# ============================================================================


@pytest.fixture
def fetch_notifications(test_db: AsyncSession):
    """All notifications for a user, oldest first."""

    async def _fetch(user_id) -> list[Notification]:
        result = await test_db.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at)
        )
        return list(result.scalars().all())

    return _fetch


@pytest.fixture
def water_alert() -> dict:
    """Predicted water failure that passes every quality gate."""
    return {
        "location": "Block A",
        "category": "water",
        "days_to_failure": 5,
        "confidence": 90,
    }
