"""Escalation sweep response schema."""
from pydantic import BaseModel


class EscalationCheckResponse(BaseModel):
    escalated: int
    rescheduled: int
    skipped: bool = False
    message: str
