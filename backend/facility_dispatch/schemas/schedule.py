"""Pydantic schemas for technician schedules."""
from datetime import datetime, timezone
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from facility_dispatch.models.schedule import ScheduleStatus


class ScheduleCreate(BaseModel):
    """Manual booking of a work slot."""

    technician_id: UUID
    incident_id: UUID
    scheduled_time: datetime = Field(..., description="Slot start, UTC")
    duration_minutes: int = Field(default=30, ge=1, le=24 * 60)

    @field_validator("scheduled_time")
    @classmethod
    def to_naive_utc(cls, v: datetime) -> datetime:
        """Stored timestamps are naive UTC."""
        if v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class ScheduleStatusUpdate(BaseModel):
    status: ScheduleStatus


class ScheduleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    technician_id: UUID
    incident_id: UUID
    scheduled_time: datetime
    duration_minutes: int
    status: ScheduleStatus
    created_at: datetime
