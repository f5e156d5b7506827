"""
Event Logger Service - incident timeline of dispatch decisions.

Usage:
    await event_logger.log(
        db=db,
        incident_id=incident.id,
        event_type=IncidentEventType.ALERT_INGESTED,
        description="Prediction ingested for Block A/water",
    )

Events are flushed with the caller's transaction, so a rolled-back
assignment leaves no trace on the timeline.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.models.incident_event import IncidentEvent, IncidentEventType

logger = logging.getLogger(__name__)


class EventLogger:
    """Writes and reads IncidentEvent rows."""

    async def log(
        self,
        db: AsyncSession,
        incident_id: UUID,
        event_type: IncidentEventType,
        description: str,
        actor: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> IncidentEvent:
        """
        Append an event to an incident's timeline.

        Args:
            db: Database session
            incident_id: Incident UUID
            event_type: Type of event (from IncidentEventType enum)
            description: Human-readable line for the timeline
            actor: Who triggered this ("system", "escalation-sweep", "api")
            metadata: Additional event-specific data (JSON-safe)

        Returns:
            Created IncidentEvent (flushed, not committed)
        """
        event = IncidentEvent(
            incident_id=incident_id,
            event_type=event_type,
            description=description,
            actor=actor or "system",
            event_metadata=metadata or {},
        )

        db.add(event)
        await db.flush()

        logger.debug(
            f"Event logged: {event_type.value} for incident {incident_id}",
            extra={"incident_id": str(incident_id), "event_type": event_type.value},
        )

        return event

    async def timeline(self, db: AsyncSession, incident_id: UUID) -> list[IncidentEvent]:
        """All events of an incident, oldest first."""
        result = await db.execute(
            select(IncidentEvent)
            .where(IncidentEvent.incident_id == incident_id)
            .order_by(IncidentEvent.created_at.asc(), IncidentEvent.id)
        )
        return list(result.scalars().all())

    # === Convenience methods for dispatch events ===

    async def log_assigned(
        self,
        db: AsyncSession,
        incident_id: UUID,
        technician_id: UUID,
        technician_label: str,
        sla_deadline: datetime,
        strategy: str,
    ) -> IncidentEvent:
        return await self.log(
            db=db,
            incident_id=incident_id,
            event_type=IncidentEventType.TECHNICIAN_ASSIGNED,
            description=f"Assigned to {technician_label}",
            metadata={
                "technician_id": str(technician_id),
                "sla_deadline": sla_deadline.isoformat(),
                "strategy": strategy,
            },
        )

    async def log_sla_breached(
        self,
        db: AsyncSession,
        incident_id: UUID,
        sla_minutes: int,
        age_minutes: int,
        actor: str,
    ) -> IncidentEvent:
        return await self.log(
            db=db,
            incident_id=incident_id,
            event_type=IncidentEventType.SLA_BREACHED,
            description=f"SLA of {sla_minutes} minutes exceeded ({age_minutes} minutes old)",
            actor=actor,
            metadata={"age_minutes": age_minutes},
        )

    async def log_reassigned(
        self,
        db: AsyncSession,
        incident_id: UUID,
        cancelled_schedule_id: UUID,
        replacement_schedule_id: UUID,
        from_technician_id: UUID,
        to_technician_id: UUID,
        to_technician_name: str,
        actor: str,
    ) -> IncidentEvent:
        """Record both halves of a move: the cancelled slot and the new owner."""
        await self.log(
            db=db,
            incident_id=incident_id,
            event_type=IncidentEventType.SCHEDULE_CANCELLED,
            description="Technician unavailable, slot cancelled",
            actor=actor,
            metadata={"schedule_id": str(cancelled_schedule_id)},
        )
        return await self.log(
            db=db,
            incident_id=incident_id,
            event_type=IncidentEventType.REASSIGNED,
            description=f"Reassigned to {to_technician_name}",
            actor=actor,
            metadata={
                "from_technician_id": str(from_technician_id),
                "to_technician_id": str(to_technician_id),
                "schedule_id": str(replacement_schedule_id),
            },
        )


# Global instance
event_logger = EventLogger()
