"""
Incident persistence used by the dispatch core.

Creation from an alert and the read queries the engine, the sweep and
the analytics need. General incident CRUD lives outside this service.
"""
import logging
from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.errors import NotFoundError
from facility_dispatch.models import utcnow
from facility_dispatch.models.incident import (
    Incident,
    IncidentSource,
    IncidentStatus,
)
from facility_dispatch.models.incident_event import IncidentEventType
from facility_dispatch.services.event_logger import event_logger
from facility_dispatch.utils.identifiers import parse_id

logger = logging.getLogger(__name__)


def predicted_failure_title(location: str) -> str:
    return f"Critical Alert: Predicted Failure at {location}"


def default_title(source: IncidentSource, location: str, category: str) -> str:
    if source == IncidentSource.PREDICTION:
        return predicted_failure_title(location)
    return f"{category.title()} issue at {location}"


class IncidentRepository:

    async def create_from_alert(
        self,
        db: AsyncSession,
        *,
        location: str,
        category: str,
        source: IncidentSource,
        priority: int,
        title: Optional[str] = None,
        description: str = "",
        reported_by: Optional[UUID] = None,
        context: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> Incident:
        """Persist a new incident in status `new` and log its ingestion."""
        timestamp = now or utcnow()
        if title is None:
            title = default_title(source, location, category)

        incident = Incident(
            title=title,
            description=description,
            location=location,
            category=category,
            status=IncidentStatus.NEW,
            priority=priority,
            source=source,
            reported_by=reported_by,
            context=context or {},
            created_at=timestamp,
            updated_at=timestamp,
        )
        db.add(incident)
        await db.flush()

        await event_logger.log(
            db=db,
            incident_id=incident.id,
            event_type=IncidentEventType.ALERT_INGESTED,
            description=f"{source.value.title()} ingested for {location}/{category}",
            metadata={"priority": priority},
        )

        logger.info(
            f"Created incident {incident.id} ({source.value}) "
            f"for {location}/{category}, priority={priority}"
        )
        return incident

    async def get(self, db: AsyncSession, incident_id: Union[str, UUID]) -> Incident:
        inc_id = parse_id(incident_id, "incident id")
        incident = await db.get(Incident, inc_id)
        if incident is None:
            raise NotFoundError("incident", inc_id)
        return incident

    async def list_incidents(
        self,
        db: AsyncSession,
        status: Optional[IncidentStatus] = None,
        category: Optional[str] = None,
        assigned_technician_id: Optional[UUID] = None,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
        statuses: Optional[tuple[IncidentStatus, ...]] = None,
    ) -> list[Incident]:
        """Incidents matching every given filter, oldest first."""
        stmt = select(Incident)
        if status is not None:
            stmt = stmt.where(Incident.status == status)
        if statuses:
            stmt = stmt.where(Incident.status.in_(statuses))
        if category:
            stmt = stmt.where(Incident.category == category)
        if assigned_technician_id is not None:
            stmt = stmt.where(Incident.assigned_technician_id == assigned_technician_id)
        if created_after is not None:
            stmt = stmt.where(Incident.created_at >= created_after)
        if created_before is not None:
            stmt = stmt.where(Incident.created_at < created_before)
        stmt = stmt.order_by(Incident.created_at.asc(), Incident.id)

        result = await db.execute(stmt)
        return list(result.scalars().all())


# Global instance
incident_repository = IncidentRepository()
