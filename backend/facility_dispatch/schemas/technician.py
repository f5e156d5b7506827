"""
Pydantic schemas for Technician API requests and responses.

- Separate schemas for create/update/response
- ConfigDict for ORM integration
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class TechnicianCreate(BaseModel):
    """Schema for registering a technician."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    specialization: str = Field(
        default="General",
        max_length=50,
        description="Electrical / Plumbing / IT / HVAC / General",
    )
    max_concurrent: int = Field(default=2, ge=1, le=10)


class TechnicianResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    specialization: str
    active: bool
    available: bool
    current_assignments: int
    max_concurrent: int
    created_at: datetime


class TechnicianAvailabilityUpdate(BaseModel):
    """Toggle whether a technician takes new work."""

    available: Optional[bool] = None
    active: Optional[bool] = None
