"""
Alert intake API endpoints.

A single alert answers 201 with the assignment when a technician was
booked, or 200 with the refusal outcome otherwise (gate, cooldown,
duplicate window, rate limit, nobody available). Refusals are normal
answers, not HTTP errors.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.database import get_db
from facility_dispatch.schemas.alert import (
    AlertAccepted,
    AlertBatchIn,
    AlertBatchResponse,
    AlertDeclined,
    AlertIn,
)
from facility_dispatch.services.assignment_engine import assignment_engine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    status_code=201,
    response_model=AlertAccepted,
    responses={200: {"model": AlertDeclined, "description": "Alert refused"}},
)
async def submit_alert(
    alert: AlertIn,
    db: AsyncSession = Depends(get_db),
):
    """Submit one alert for automatic assignment."""
    result = await assignment_engine.submit_alert(db, alert)

    public = result.to_public()
    if public is not None:
        return public

    declined = AlertDeclined(
        outcome=result.outcome.value,
        reason=result.reason,
        incident_id=result.incident_id,
    )
    return JSONResponse(status_code=200, content=declined.model_dump(mode="json"))


@router.post("/batch", response_model=AlertBatchResponse)
async def submit_alert_batch(
    batch: AlertBatchIn,
    db: AsyncSession = Depends(get_db),
):
    """
    Submit a batch of predicted-failure alerts.

    Every alert is processed in its own transaction; one failing alert
    does not stop the rest.
    """
    result = await assignment_engine.process_alerts(db, batch.alerts)
    return result.to_dict()
