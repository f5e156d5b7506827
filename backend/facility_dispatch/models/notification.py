"""
Notification model: in-app messages produced by dispatch.

This is the record kept by the default notification sink. Delivery to
external channels is best-effort and never blocks the producing
operation.
"""
import enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, Index, String, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from facility_dispatch.models import Base, TimestampMixin


class NotificationType(str, enum.Enum):
    """What the message is about."""

    TECHNICIAN_ASSIGNED = "technician_assigned"
    SLA_EXCEEDED = "sla_exceeded"
    ESCALATION = "escalation"
    ISSUE_RESOLVED = "issue_resolved"


class Notification(Base, TimestampMixin):
    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    # Technician or user id, so no foreign key
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    incident_id: Mapped[Optional[UUID]] = mapped_column(nullable=True, index=True)

    __table_args__ = (
        Index("idx_notification_user_read", "user_id", "read"),
    )

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, "
            f"user_id={self.user_id}, "
            f"type={self.type.value})>"
        )
