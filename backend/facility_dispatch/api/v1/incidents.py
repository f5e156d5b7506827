"""
Incident analytics API endpoints.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.core.analytics.aging import AgingAnalysis
from facility_dispatch.database import get_db
from facility_dispatch.models.incident import IncidentStatus
from facility_dispatch.services.aging_analysis import aging_analysis_service

router = APIRouter()


@router.get("/aging", response_model=AgingAnalysis)
async def get_aging_analysis(
    status: Optional[IncidentStatus] = Query(None, description="Filter by status"),
    category: Optional[str] = Query(None, description="Filter by category"),
    db: AsyncSession = Depends(get_db),
):
    """Incidents bucketed by age, with SLA breach and at-risk counts."""
    return await aging_analysis_service.get_aging_analysis(db, status=status, category=category)
