"""
Incident aging analytics.

Buckets incidents by whole minutes since creation and measures them
against the SLA. Pure: operates on (id, created_at) pairs.
"""
import math
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# (label, lower bound inclusive, upper bound exclusive) in minutes
AGING_BUCKETS: tuple[tuple[str, float, float], ...] = (
    ("0-5 min", 0, 5),
    ("5-10 min", 5, 10),
    ("10-15 min", 10, 15),
    ("15-30 min", 15, 30),
    ("30-60 min", 30, 60),
    ("1-2 hours", 60, 120),
    ("2-4 hours", 120, 240),
    ("4+ hours", 240, math.inf),
)


class AgingBucket(BaseModel):
    range: str
    count: int = 0
    incident_ids: list[str] = Field(default_factory=list)


class AgingAnalysis(BaseModel):
    buckets: list[AgingBucket]
    total: int = Field(..., ge=0)
    average_age: int = Field(..., ge=0, description="Minutes, rounded")
    oldest_incident_age: int = Field(..., ge=0, description="Minutes")
    sla_breaches: int = Field(..., ge=0)
    at_risk: int = Field(..., ge=0, description="Within the warning band of the SLA")


def age_minutes(created_at: datetime, now: datetime) -> int:
    """Whole minutes elapsed, never negative."""
    return max(0, int((now - created_at).total_seconds() // 60))


def bucket_label(minutes: int) -> Optional[str]:
    for label, lower, upper in AGING_BUCKETS:
        if lower <= minutes < upper:
            return label
    return None


def analyze_ages(
    incidents: Iterable[tuple[UUID, datetime]],
    now: datetime,
    sla_minutes: int,
    warning_ratio: float = 0.8,
) -> AgingAnalysis:
    """
    Build the aging report.

    An incident breaches when its age is strictly greater than the SLA and
    is at risk when its age falls in [warning_ratio * SLA, SLA].
    """
    buckets = {label: AgingBucket(range=label) for label, _, _ in AGING_BUCKETS}
    ages: list[int] = []
    breaches = 0
    at_risk = 0
    warning_minutes = sla_minutes * warning_ratio

    for incident_id, created_at in incidents:
        minutes = age_minutes(created_at, now)
        ages.append(minutes)

        if minutes > sla_minutes:
            breaches += 1
        elif minutes >= warning_minutes:
            at_risk += 1

        bucket = buckets[bucket_label(minutes)]
        bucket.count += 1
        bucket.incident_ids.append(str(incident_id))

    return AgingAnalysis(
        buckets=list(buckets.values()),
        total=len(ages),
        average_age=round(sum(ages) / len(ages)) if ages else 0,
        oldest_incident_age=max(ages) if ages else 0,
        sla_breaches=breaches,
        at_risk=at_risk,
    )
