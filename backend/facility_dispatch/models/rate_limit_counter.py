"""
Per-day auto-assignment counters.

One row per (subject, UTC day). subject is a technician id or the
literal "system". Rows are incremented only through a conditional
UPDATE (count < cap) so concurrent assignments cannot overshoot.
"""
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import Date, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from facility_dispatch.models import Base, TimestampMixin

SYSTEM_SUBJECT = "system"


class RateLimitCounter(Base, TimestampMixin):
    __tablename__ = "rate_limit_counters"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    subject: Mapped[str] = mapped_column(String(64), nullable=False)
    day: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("subject", "day", name="uq_rate_limit_subject_day"),
    )

    def __repr__(self) -> str:
        return f"<RateLimitCounter(subject={self.subject}, day={self.day}, count={self.count})>"
