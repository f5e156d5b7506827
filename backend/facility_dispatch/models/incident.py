"""
Incident model representing a reported or predicted facility problem.

Note:
- Status is a closed enum with an explicit transition table
- escalated only ever moves false -> true (see EscalationSweep)
- context JSON keeps the originating alert and duplicate counters
"""
import enum
from datetime import datetime
from typing import TYPE_CHECKING, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from facility_dispatch.errors import InvalidTransitionError
from facility_dispatch.models import Base, TimestampMixin

if TYPE_CHECKING:
    from facility_dispatch.models.incident_event import IncidentEvent
    from facility_dispatch.models.schedule import Schedule
    from facility_dispatch.models.technician import Technician


class IncidentStatus(str, enum.Enum):
    """Incident lifecycle states."""

    NEW = "new"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class IncidentSource(str, enum.Enum):
    """Where the incident came from."""

    REPORT = "report"  # Filed by a person
    PREDICTION = "prediction"  # Predicted-failure alert


INCIDENT_TRANSITIONS: dict[IncidentStatus, frozenset[IncidentStatus]] = {
    IncidentStatus.NEW: frozenset({
        IncidentStatus.IN_PROGRESS,
        IncidentStatus.RESOLVED,
        IncidentStatus.CANCELLED,
    }),
    IncidentStatus.IN_PROGRESS: frozenset({
        IncidentStatus.NEW,  # Work slot cancelled, back in the queue
        IncidentStatus.RESOLVED,
        IncidentStatus.CANCELLED,
    }),
    IncidentStatus.RESOLVED: frozenset(),
    IncidentStatus.CANCELLED: frozenset(),
}

OPEN_STATUSES = (IncidentStatus.NEW, IncidentStatus.IN_PROGRESS)


class Incident(Base, TimestampMixin):
    """
    Central incident entity.

    Created on report or alert ingestion, mutated by the assignment
    engine (assignment, priority override, SLA fields) and by the
    escalation sweep (escalated flag). Never deleted by dispatch.
    """

    __tablename__ = "incidents"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    location: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    status: Mapped[IncidentStatus] = mapped_column(
        SQLEnum(IncidentStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=IncidentStatus.NEW,
        index=True,
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    source: Mapped[IncidentSource] = mapped_column(
        SQLEnum(IncidentSource, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=IncidentSource.REPORT,
    )
    reported_by: Mapped[Optional[UUID]] = mapped_column(
        nullable=True,
        comment="User who filed the report; notified on SLA breach",
    )

    # Assignment tracking
    assigned_technician_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("technicians.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # SLA tracking
    sla_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    sla_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Resolution tracking
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_by: Mapped[Optional[UUID]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    context: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Originating alert payload, duplicate counters",
    )

    assigned_technician: Mapped[Optional["Technician"]] = relationship(
        "Technician",
        foreign_keys=[assigned_technician_id],
    )
    schedules: Mapped[list["Schedule"]] = relationship(
        "Schedule",
        back_populates="incident",
        order_by="Schedule.created_at",
    )
    events: Mapped[list["IncidentEvent"]] = relationship(
        "IncidentEvent",
        back_populates="incident",
        cascade="all, delete-orphan",
        order_by="IncidentEvent.created_at",
    )

    __table_args__ = (
        Index("idx_incident_location_category", "location", "category", "created_at"),
        Index("idx_incident_status_escalated", "status", "escalated"),
    )

    def __repr__(self) -> str:
        return (
            f"<Incident(id={self.id}, "
            f"location={self.location}, "
            f"category={self.category}, "
            f"status={self.status.value})>"
        )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def can_transition_to(self, target: IncidentStatus) -> bool:
        return target in INCIDENT_TRANSITIONS[self.status]

    def transition_to(self, target: IncidentStatus) -> None:
        """Move to `target`, rejecting moves the lifecycle does not allow."""
        if target == self.status:
            return
        if not self.can_transition_to(target):
            raise InvalidTransitionError("incident", self.status, target)
        self.status = target
