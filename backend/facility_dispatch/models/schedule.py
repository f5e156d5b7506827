"""
Technician schedule model: a time-boxed work slot against one incident.

A technician must never hold two active (scheduled / in-progress)
schedules whose [scheduled_time, scheduled_time + duration) intervals
intersect. ScheduleStore enforces this at creation time.
"""
import enum
from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from facility_dispatch.errors import InvalidTransitionError
from facility_dispatch.models import Base, TimestampMixin

if TYPE_CHECKING:
    from facility_dispatch.models.incident import Incident
    from facility_dispatch.models.technician import Technician


DEFAULT_DURATION_MINUTES = 30


class ScheduleStatus(str, enum.Enum):
    """Work slot lifecycle states."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


SCHEDULE_TRANSITIONS: dict[ScheduleStatus, frozenset[ScheduleStatus]] = {
    ScheduleStatus.SCHEDULED: frozenset({
        ScheduleStatus.IN_PROGRESS,
        ScheduleStatus.COMPLETED,
        ScheduleStatus.CANCELLED,
    }),
    ScheduleStatus.IN_PROGRESS: frozenset({
        ScheduleStatus.COMPLETED,
        ScheduleStatus.CANCELLED,
    }),
    ScheduleStatus.COMPLETED: frozenset(),
    ScheduleStatus.CANCELLED: frozenset(),
}

ACTIVE_SCHEDULE_STATUSES = (ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS)


class Schedule(Base, TimestampMixin):
    """Assignment of a technician to an incident for a time window."""

    __tablename__ = "technician_schedules"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    technician_id: Mapped[UUID] = mapped_column(
        ForeignKey("technicians.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    incident_id: Mapped[UUID] = mapped_column(
        ForeignKey("incidents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    scheduled_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    duration_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_DURATION_MINUTES,
    )
    status: Mapped[ScheduleStatus] = mapped_column(
        SQLEnum(ScheduleStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ScheduleStatus.SCHEDULED,
        index=True,
    )

    technician: Mapped["Technician"] = relationship(
        "Technician",
        back_populates="schedules",
    )
    incident: Mapped["Incident"] = relationship(
        "Incident",
        back_populates="schedules",
    )

    __table_args__ = (
        # Overlap checks: one technician's active slots
        Index("idx_schedule_technician_status", "technician_id", "status", "scheduled_time"),
        # Reschedule scan: future scheduled slots
        Index("idx_schedule_status_time", "status", "scheduled_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<Schedule(id={self.id}, "
            f"technician_id={self.technician_id}, "
            f"incident_id={self.incident_id}, "
            f"status={self.status.value}, "
            f"start={self.scheduled_time})>"
        )

    @property
    def ends_at(self) -> datetime:
        return self.scheduled_time + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_SCHEDULE_STATUSES

    def transition_to(self, target: ScheduleStatus) -> None:
        if target == self.status:
            return
        if target not in SCHEDULE_TRANSITIONS[self.status]:
            raise InvalidTransitionError("schedule", self.status, target)
        self.status = target
