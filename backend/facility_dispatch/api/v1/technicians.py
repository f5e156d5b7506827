"""
Technician and schedule API endpoints.

- Directory reads with live capacity
- Manual slot booking (overlap and capacity checked)
- Slot status changes, mirrored onto the incident
- Availability toggles
"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.database import get_db
from facility_dispatch.models.schedule import ScheduleStatus
from facility_dispatch.schemas.schedule import (
    ScheduleCreate,
    ScheduleResponse,
    ScheduleStatusUpdate,
)
from facility_dispatch.schemas.technician import (
    TechnicianAvailabilityUpdate,
    TechnicianResponse,
)
from facility_dispatch.services.incident_repository import incident_repository
from facility_dispatch.services.notification_service import notification_service
from facility_dispatch.services.schedule_store import schedule_store
from facility_dispatch.services.technician_directory import technician_directory
from facility_dispatch.utils.transactions import store_guard, transaction

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=list[TechnicianResponse])
async def list_technicians(
    available_only: bool = Query(False, description="Only technicians who can take work now"),
    specialization: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """List technicians in directory order."""
    async with store_guard("list technicians"):
        technicians = await technician_directory.list_technicians(db)

    if available_only:
        technicians = [t for t in technicians if t.is_eligible()]
    if specialization:
        technicians = [
            t for t in technicians if t.specialization.lower() == specialization.lower()
        ]
    return technicians


@router.post("/schedules", response_model=ScheduleResponse, status_code=201)
async def create_schedule(
    data: ScheduleCreate,
    db: AsyncSession = Depends(get_db),
):
    """
    Book a technician for an incident.

    409 when the slot overlaps an active schedule, or the technician is
    unavailable or at capacity.
    """
    async with store_guard("create schedule"):
        async with transaction(db):
            schedule = await schedule_store.create_schedule(
                db,
                technician_id=data.technician_id,
                incident_id=data.incident_id,
                scheduled_time=data.scheduled_time,
                duration_minutes=data.duration_minutes,
                actor="api",
            )
            incident = await incident_repository.get(db, schedule.incident_id)
            await notification_service.notify_schedule_created(
                db,
                technician_id=schedule.technician_id,
                incident_id=incident.id,
                title=incident.title,
                schedule_id=schedule.id,
                scheduled_time=schedule.scheduled_time,
            )
    return schedule


@router.patch("/schedules/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule_status(
    schedule_id: UUID,
    data: ScheduleStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Move a slot through its lifecycle; 409 on an illegal transition."""
    async with store_guard("update schedule"):
        async with transaction(db):
            schedule = await schedule_store.update_schedule_status(
                db, schedule_id, data.status, actor="api"
            )
    return schedule


@router.get("/{technician_id}", response_model=TechnicianResponse)
async def get_technician(
    technician_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    async with store_guard("get technician"):
        return await technician_directory.get_technician(db, technician_id)


@router.get("/{technician_id}/schedules", response_model=list[ScheduleResponse])
async def list_technician_schedules(
    technician_id: UUID,
    status: Optional[ScheduleStatus] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """A technician's schedules, earliest first."""
    async with store_guard("list schedules"):
        # 404 for unknown technicians rather than an empty list
        await technician_directory.get_technician(db, technician_id)
        return await schedule_store.list_technician_schedules(
            db, technician_id, status=status, limit=limit
        )


@router.patch("/{technician_id}/availability", response_model=TechnicianResponse)
async def update_availability(
    technician_id: UUID,
    data: TechnicianAvailabilityUpdate,
    db: AsyncSession = Depends(get_db),
):
    """
    Mark a technician available/unavailable or (in)active.

    Future slots of an unavailable technician are moved by the next
    escalation sweep.
    """
    async with store_guard("update availability"):
        async with transaction(db):
            technician = await technician_directory.set_availability(
                db, technician_id, available=data.available, active=data.active
            )
    return technician
