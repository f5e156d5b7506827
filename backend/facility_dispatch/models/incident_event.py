"""
Incident Event Model - audit timeline of dispatch decisions.

Every significant action creates an event:
- Alert ingested / duplicate suppressed
- Technician assigned, schedule created, cancelled or unavailable
- Status changed
- SLA breached, reassigned, resolved
"""
import enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import JSON, ForeignKey, Index, String, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from facility_dispatch.models import Base, TimestampMixin

if TYPE_CHECKING:
    from facility_dispatch.models.incident import Incident


class IncidentEventType(str, enum.Enum):
    """Types of events in the incident lifecycle."""

    # Intake
    ALERT_INGESTED = "alert_ingested"
    DUPLICATE_SUPPRESSED = "duplicate_suppressed"
    ASSIGNMENT_DEFERRED = "assignment_deferred"

    # Assignment
    TECHNICIAN_ASSIGNED = "technician_assigned"
    SCHEDULE_CREATED = "schedule_created"
    SCHEDULE_CANCELLED = "schedule_cancelled"
    SLOT_UNAVAILABLE = "slot_unavailable"
    REASSIGNED = "reassigned"

    # SLA
    SLA_BREACHED = "sla_breached"

    # Lifecycle
    STATUS_CHANGED = "status_changed"
    RESOLVED = "resolved"


class IncidentEvent(Base, TimestampMixin):
    __tablename__ = "incident_events"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    incident_id: Mapped[UUID] = mapped_column(
        ForeignKey("incidents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type: Mapped[IncidentEventType] = mapped_column(
        SQLEnum(IncidentEventType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False, default="system")
    event_metadata: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    incident: Mapped["Incident"] = relationship("Incident", back_populates="events")

    __table_args__ = (
        Index("idx_incident_event_timeline", "incident_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<IncidentEvent(incident_id={self.incident_id}, type={self.event_type.value})>"
