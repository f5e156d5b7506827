"""
Alert schemas for request/response validation.

An alert is either a human report or a predicted-failure signal from the
forecasting model. Predictions carry the model's confidence numbers and
must pass the quality gate before they may pull a technician.
"""
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from facility_dispatch.models.incident import IncidentSource


class AlertIn(BaseModel):
    """Incoming alert."""

    model_config = ConfigDict(str_strip_whitespace=True)

    location: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=50)
    source: IncidentSource = Field(
        default=IncidentSource.PREDICTION,
        description="'prediction' for model alerts, 'report' for human reports",
    )
    days_to_failure: Optional[float] = Field(
        None,
        ge=0,
        description="Predicted days until failure (required for predictions)",
    )
    confidence: Optional[float] = Field(None, ge=0, le=100, description="Percent")
    model_r2: Optional[float] = Field(None, le=1.0)
    title: Optional[str] = Field(None, max_length=255)
    description: str = Field(default="", max_length=5000)
    reported_by: Optional[UUID] = None

    @field_validator("category")
    @classmethod
    def normalize_category(cls, v: str) -> str:
        return v.lower()

    @model_validator(mode="after")
    def predictions_need_horizon(self) -> "AlertIn":
        if self.source == IncidentSource.PREDICTION and self.days_to_failure is None:
            raise ValueError("days_to_failure is required for prediction alerts")
        return self

    def payload(self) -> dict:
        """JSON-safe copy kept on the incident context."""
        return self.model_dump(mode="json", exclude_none=True)


class AlertAccepted(BaseModel):
    """Alert produced an assignment."""

    incident_id: UUID
    technician_id: UUID
    sla_deadline: str


class AlertDeclined(BaseModel):
    """Alert was refused by a gate, a guard or a limit."""

    accepted: bool = False
    outcome: str
    reason: Optional[str] = None
    incident_id: Optional[UUID] = None


class AlertBatchIn(BaseModel):
    alerts: list[AlertIn] = Field(..., min_length=1, max_length=500)


class AlertBatchItem(BaseModel):
    location: str
    category: str
    success: bool
    outcome: Optional[str] = None
    incident_id: Optional[UUID] = None
    technician_id: Optional[UUID] = None
    error: Optional[str] = None


class AlertBatchResponse(BaseModel):
    assigned: int
    failed: int
    results: list[AlertBatchItem]
