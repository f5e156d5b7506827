"""
Technician model: the directory of people who can be dispatched.

Note:
- current_assignments is only ever changed through conditional UPDATEs
  in TechnicianDirectory, never read-modify-write on the ORM object
- CHECK constraint backs the capacity invariant at the database level
"""
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from facility_dispatch.models import Base, TimestampMixin

if TYPE_CHECKING:
    from facility_dispatch.models.schedule import Schedule


DEFAULT_SPECIALIZATION = "General"
DEFAULT_MAX_CONCURRENT = 2


class Technician(Base, TimestampMixin):
    """
    A technician who can be scheduled against incidents.

    `active` says whether the technician can be scheduled at all,
    `available` whether they are accepting new work right now.
    """

    __tablename__ = "technicians"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
    )
    specialization: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=DEFAULT_SPECIALIZATION,
        comment="Electrical / Plumbing / IT / HVAC / General",
    )

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    current_assignments: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Active schedules currently held",
    )
    max_concurrent: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_CONCURRENT,
    )

    schedules: Mapped[list["Schedule"]] = relationship(
        "Schedule",
        back_populates="technician",
        order_by="Schedule.scheduled_time",
    )

    __table_args__ = (
        CheckConstraint(
            "current_assignments >= 0 AND current_assignments <= max_concurrent",
            name="ck_technician_capacity",
        ),
        Index("idx_technician_eligible", "active", "available"),
    )

    def __repr__(self) -> str:
        return (
            f"<Technician(id={self.id}, "
            f"name={self.name}, "
            f"specialization={self.specialization}, "
            f"load={self.current_assignments}/{self.max_concurrent})>"
        )

    def normalize(self, default_max_concurrent: int = DEFAULT_MAX_CONCURRENT) -> "Technician":
        """Fill defaults for rows written before the columns were enforced."""
        if self.active is None:
            self.active = True
        if self.available is None:
            self.available = True
        if not self.max_concurrent:
            self.max_concurrent = default_max_concurrent
        if self.current_assignments is None:
            self.current_assignments = 0
        if not self.specialization:
            self.specialization = DEFAULT_SPECIALIZATION
        return self

    def is_at_capacity(self) -> bool:
        return self.current_assignments >= self.max_concurrent

    def is_eligible(self) -> bool:
        """Can this technician take a new assignment right now?"""
        return self.active and self.available and not self.is_at_capacity()
