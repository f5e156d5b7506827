"""
Escalation API endpoints.

On-demand trigger for the sweep that Celery Beat runs every minute.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.database import get_db
from facility_dispatch.schemas.escalation import EscalationCheckResponse
from facility_dispatch.services.escalation_sweep import escalation_sweep

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/check", response_model=EscalationCheckResponse)
async def run_escalation_check(db: AsyncSession = Depends(get_db)):
    """Escalate SLA breaches and move slots away from unavailable technicians."""
    result = await escalation_sweep.run_escalation_sweep(db)

    if result.skipped:
        message = "Escalation sweep already running"
    else:
        message = (
            f"Escalated {result.escalated_count} incidents, "
            f"rescheduled {result.rescheduled_count} assignments"
        )

    return EscalationCheckResponse(
        escalated=result.escalated_count,
        rescheduled=result.rescheduled_count,
        skipped=result.skipped,
        message=message,
    )
