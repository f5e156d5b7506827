"""
Integration test fixtures for API endpoint testing.

This module provides fixtures for testing FastAPI endpoints with:
- Test database injected through the get_db dependency
- The escalation sweep lock replaced so no Redis is needed
- Authentication disabled unless a test configures a key
"""
from datetime import timedelta
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.config import settings
from facility_dispatch.database import get_db
from facility_dispatch.main import app
from facility_dispatch.models import utcnow
from facility_dispatch.services.escalation_sweep import escalation_sweep



# ============================================================================
# API Test Client with Dependency Overrides
# ============================================================================


@pytest.fixture
async def api_client(
    test_db: AsyncSession,
    sweep_lock_stub,
    monkeypatch,
) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client for testing API endpoints.

    Usage:
        response = await api_client.post("/api/v1/alerts", json=water_alert)
        assert response.status_code == 201
    """

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(escalation_sweep, "lock", sweep_lock_stub)
    monkeypatch.setattr(settings, "api_key", SecretStr(""))

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Wall-clock fixtures
# ============================================================================
# The API stamps incidents with the current time, so data created for API
# tests is dated relative to utcnow() rather than the fixed test clock.


@pytest.fixture
def fresh_incident(incident_factory):
    """Incident created `minutes_ago` minutes before the current time."""

    async def _create(minutes_ago: int = 0, **kwargs):
        created = utcnow() - timedelta(minutes=minutes_ago)
        return await incident_factory(created_at=created, updated_at=created, **kwargs)

    return _create


@pytest.fixture
async def plumber(technician_factory):
    return await technician_factory(name="Dana Reyes", specialization="Plumbing")
