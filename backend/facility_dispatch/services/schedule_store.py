"""
Schedule Store: time-boxed technician work slots.

Note:
- create_schedule locks the technician row (SELECT ... FOR UPDATE) so
  the overlap check and the insert are serialized per technician
- Capacity is reserved with the directory's conditional UPDATE, never
  by incrementing a value read earlier
- Status changes follow the schedule transition table and are mirrored
  onto the incident
"""
import logging
from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.config import Settings, get_settings
from facility_dispatch.core.scheduling.intervals import first_conflict, slot_end
from facility_dispatch.errors import (
    NotFoundError,
    OverlapError,
    TechnicianUnavailableError,
    ValidationError,
)
from facility_dispatch.models import utcnow
from facility_dispatch.models.incident import Incident, IncidentStatus
from facility_dispatch.models.incident_event import IncidentEventType
from facility_dispatch.models.schedule import (
    ACTIVE_SCHEDULE_STATUSES,
    Schedule,
    ScheduleStatus,
)
from facility_dispatch.services.event_logger import event_logger
from facility_dispatch.services.notification_service import (
    NotificationService,
    notification_service,
)
from facility_dispatch.services.technician_directory import (
    TechnicianDirectory,
    technician_directory,
)
from facility_dispatch.utils.identifiers import parse_id

logger = logging.getLogger(__name__)

# Incident context flag: assigned with capacity held, but no slot booked yet
SLOT_MISSING_KEY = "slot_missing"


class ScheduleStore:
    """Create, query and transition technician schedules."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        directory: Optional[TechnicianDirectory] = None,
        sink: Optional[NotificationService] = None,
    ):
        self.settings = settings or get_settings()
        self.directory = directory or technician_directory
        self.sink = sink or notification_service

    async def _active_slots(self, db: AsyncSession, technician_id: UUID) -> list[tuple[datetime, int]]:
        stmt = select(Schedule.scheduled_time, Schedule.duration_minutes).where(
            Schedule.technician_id == technician_id,
            Schedule.status.in_(ACTIVE_SCHEDULE_STATUSES),
        )
        result = await db.execute(stmt)
        return [
            (row.scheduled_time, row.duration_minutes or self.settings.default_schedule_duration_minutes)
            for row in result
        ]

    async def has_overlap(
        self,
        db: AsyncSession,
        technician_id: UUID,
        start: datetime,
        duration_minutes: int,
    ) -> bool:
        """
        Does [start, start + duration) intersect any active schedule of
        this technician?
        """
        existing = await self._active_slots(db, technician_id)
        conflict = first_conflict(start, duration_minutes, existing)
        if conflict:
            logger.debug(
                f"Technician {technician_id} slot {start.isoformat()} (+{duration_minutes}m) "
                f"overlaps {conflict[0].isoformat()} (+{conflict[1]}m)"
            )
        return conflict is not None

    async def find_free_slot(
        self,
        db: AsyncSession,
        technician_id: UUID,
        earliest: datetime,
        duration_minutes: int,
    ) -> datetime:
        """Earliest start >= `earliest` that does not overlap the technician's active slots."""
        existing = await self._active_slots(db, technician_id)

        start = earliest
        # Each conflict pushes the start past that slot, so this ends within len(existing) steps
        conflict = first_conflict(start, duration_minutes, existing)
        while conflict is not None:
            start = slot_end(*conflict)
            conflict = first_conflict(start, duration_minutes, existing)
        return start

    async def create_schedule(
        self,
        db: AsyncSession,
        technician_id: Union[str, UUID],
        incident_id: Union[str, UUID],
        scheduled_time: datetime,
        duration_minutes: Optional[int] = None,
        capacity_reserved: bool = False,
        actor: str = "system",
    ) -> Schedule:
        """
        Book a work slot.

        Args:
            db: Database session
            technician_id: Technician to book
            incident_id: Incident the slot serves
            scheduled_time: Slot start (naive UTC)
            duration_minutes: Slot length (defaults to configured duration)
            capacity_reserved: Caller already reserved capacity for this
                technician; skip the availability check and the increment
            actor: Recorded on the incident timeline

        An incident assigned to this technician without a slot already
        holds its capacity; booking its slot clears the flag instead of
        reserving again.

        Raises:
            OverlapError: slot intersects an active schedule (no writes)
            TechnicianUnavailableError: technician inactive or unavailable
            CapacityExceededError: technician at max_concurrent
            NotFoundError: unknown technician or incident
        """
        duration = duration_minutes or self.settings.default_schedule_duration_minutes
        if duration <= 0:
            raise ValidationError("duration_minutes must be positive")

        inc_id = parse_id(incident_id, "incident id")
        technician = await self.directory.get_technician(db, technician_id, for_update=True)

        if await self.has_overlap(db, technician.id, scheduled_time, duration):
            raise OverlapError(
                f"Technician {technician.name} has an overlapping schedule at "
                f"{scheduled_time.isoformat()}"
            )

        incident = await db.get(Incident, inc_id)
        if incident is None:
            raise NotFoundError("incident", inc_id)

        if not capacity_reserved:
            if not (technician.active and technician.available):
                raise TechnicianUnavailableError(
                    f"Technician {technician.name} is not available"
                )
            context = incident.context or {}
            if context.get(SLOT_MISSING_KEY) and incident.assigned_technician_id == technician.id:
                incident.context = {k: v for k, v in context.items() if k != SLOT_MISSING_KEY}
                logger.info(f"Incident {inc_id} gets its missing slot on held capacity")
            else:
                await self.directory.reserve_capacity(db, technician.id)

        schedule = Schedule(
            technician_id=technician.id,
            incident_id=inc_id,
            scheduled_time=scheduled_time,
            duration_minutes=duration,
            status=ScheduleStatus.SCHEDULED,
        )
        db.add(schedule)
        await db.flush()

        await event_logger.log(
            db=db,
            incident_id=inc_id,
            event_type=IncidentEventType.SCHEDULE_CREATED,
            description=(
                f"{technician.name} scheduled at {scheduled_time.isoformat()} "
                f"for {duration} minutes"
            ),
            actor=actor,
            metadata={
                "schedule_id": str(schedule.id),
                "technician_id": str(technician.id),
            },
        )

        logger.info(
            f"Created schedule {schedule.id} for technician {technician.name} "
            f"on incident {inc_id} at {scheduled_time.isoformat()}"
        )
        return schedule

    async def get_schedule(self, db: AsyncSession, schedule_id: Union[str, UUID]) -> Schedule:
        sched_id = parse_id(schedule_id, "schedule id")
        schedule = await db.get(Schedule, sched_id)
        if schedule is None:
            raise NotFoundError("schedule", sched_id)
        return schedule

    async def list_technician_schedules(
        self,
        db: AsyncSession,
        technician_id: Union[str, UUID],
        status: Optional[ScheduleStatus] = None,
        limit: int = 50,
    ) -> list[Schedule]:
        """A technician's schedules, earliest first."""
        tech_id = parse_id(technician_id, "technician id")
        stmt = select(Schedule).where(Schedule.technician_id == tech_id)
        if status is not None:
            stmt = stmt.where(Schedule.status == status)
        stmt = stmt.order_by(Schedule.scheduled_time.asc()).limit(limit)

        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def list_future_scheduled(
        self,
        db: AsyncSession,
        now: Optional[datetime] = None,
    ) -> list[Schedule]:
        """Slots still in `scheduled` status that start at or after `now`."""
        check_time = now or utcnow()
        stmt = (
            select(Schedule)
            .where(
                Schedule.status == ScheduleStatus.SCHEDULED,
                Schedule.scheduled_time >= check_time,
            )
            .order_by(Schedule.scheduled_time.asc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def update_schedule_status(
        self,
        db: AsyncSession,
        schedule_id: Union[str, UUID],
        status: ScheduleStatus,
        now: Optional[datetime] = None,
        actor: str = "system",
    ) -> Schedule:
        """
        Transition a schedule and mirror the change onto its incident.

        - in-progress: incident moves to in-progress
        - completed: incident resolved; resolved_at, completed_by,
          completed_at stamped, reporter notified
        - completed / cancelled: technician capacity released

        Raises:
            InvalidTransitionError: transition not allowed
        """
        schedule = await self.get_schedule(db, schedule_id)
        previous = schedule.status
        if previous == status:
            return schedule

        schedule.transition_to(status)
        timestamp = now or utcnow()

        if previous in ACTIVE_SCHEDULE_STATUSES and status not in ACTIVE_SCHEDULE_STATUSES:
            await self.directory.release_capacity(db, schedule.technician_id)

        incident = await db.get(Incident, schedule.incident_id)
        if incident is not None:
            await self._mirror_onto_incident(db, incident, schedule, timestamp, actor)

        await db.flush()
        logger.info(
            f"Schedule {schedule.id} status {previous.value} -> {status.value}"
        )
        return schedule

    async def _mirror_onto_incident(
        self,
        db: AsyncSession,
        incident: Incident,
        schedule: Schedule,
        now: datetime,
        actor: str,
    ) -> None:
        if schedule.status == ScheduleStatus.IN_PROGRESS:
            target = IncidentStatus.IN_PROGRESS
        elif schedule.status == ScheduleStatus.COMPLETED:
            target = IncidentStatus.RESOLVED
        else:
            return

        if incident.status == target:
            return
        if not incident.can_transition_to(target):
            logger.warning(
                f"Not mirroring schedule {schedule.id} ({schedule.status.value}) onto "
                f"incident {incident.id} in status {incident.status.value}"
            )
            return

        previous = incident.status
        incident.transition_to(target)

        if target == IncidentStatus.RESOLVED:
            incident.resolved_at = now
            incident.completed_by = schedule.technician_id
            incident.completed_at = now
            event_type = IncidentEventType.RESOLVED
            description = "Resolved on completion of the technician's work slot"
        else:
            event_type = IncidentEventType.STATUS_CHANGED
            description = f"Status {previous.value} -> {target.value} (work started)"

        await event_logger.log(
            db=db,
            incident_id=incident.id,
            event_type=event_type,
            description=description,
            actor=actor,
            metadata={"schedule_id": str(schedule.id), "from": previous.value, "to": target.value},
        )

        if target == IncidentStatus.RESOLVED and incident.reported_by is not None:
            await self.sink.notify_issue_resolved(
                db, user_id=incident.reported_by, incident_id=incident.id, title=incident.title
            )


# Global instance
schedule_store = ScheduleStore()
