"""
Escalation Sweep.

Periodic pass over open incidents and future schedules:

1. Breach scan: open incidents older than the SLA that are not yet
   escalated get escalated=true / escalated_at=now. The reporter and
   every admin are notified.
2. Reschedule scan: future `scheduled` slots held by a technician who is
   now unavailable or inactive are moved to the least-loaded eligible
   technician free at that time.

Note:
- escalated flips with a conditional UPDATE (WHERE escalated = false),
  so a concurrent or repeated sweep can never re-stamp escalated_at
- Each item commits on its own; one bad item is logged and skipped
- Single-flight through SweepLock; without Redis the idempotent checks
  above keep overlapping runs harmless
"""
import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.config import Settings, get_settings
from facility_dispatch.core.analytics.aging import age_minutes
from facility_dispatch.errors import DispatchError, StoreUnavailableError
from facility_dispatch.models import utcnow
from facility_dispatch.models.incident import OPEN_STATUSES, Incident
from facility_dispatch.models.schedule import Schedule, ScheduleStatus
from facility_dispatch.models.technician import Technician
from facility_dispatch.models.user import User, UserRole
from facility_dispatch.services.assignment_engine import AssignmentEngine, assignment_engine
from facility_dispatch.services.event_logger import event_logger
from facility_dispatch.services.notification_service import (
    NotificationService,
    notification_service,
)
from facility_dispatch.services.sweep_lock import SweepLock, sweep_lock
from facility_dispatch.utils.transactions import store_guard, transaction

logger = logging.getLogger(__name__)

SWEEP_ACTOR = "escalation-sweep"


class SweepResult:
    """Counts from one sweep."""

    def __init__(self, escalated_count: int = 0, rescheduled_count: int = 0, skipped: bool = False):
        self.escalated_count = escalated_count
        self.rescheduled_count = rescheduled_count
        self.skipped = skipped

    def to_dict(self) -> dict:
        return {
            "escalated_count": self.escalated_count,
            "rescheduled_count": self.rescheduled_count,
            "skipped": self.skipped,
        }

    def __repr__(self) -> str:
        return (
            f"<SweepResult(escalated={self.escalated_count}, "
            f"rescheduled={self.rescheduled_count}, skipped={self.skipped})>"
        )


class EscalationSweep:
    """Breach detection and stale-schedule recovery."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine: Optional[AssignmentEngine] = None,
        sink: Optional[NotificationService] = None,
        lock: Optional[SweepLock] = None,
    ):
        self.settings = settings or get_settings()
        self.engine = engine or assignment_engine
        self.sink = sink or notification_service
        self.lock = lock or sweep_lock

    async def run_escalation_sweep(
        self,
        db: AsyncSession,
        now: Optional[datetime] = None,
    ) -> SweepResult:
        """
        Run both scans once.

        Args:
            db: Database session (no transaction open)
            now: Sweep time, naive UTC (defaults to current time)

        Raises:
            StoreUnavailableError: store timeout or connection loss
        """
        timestamp = now or utcnow()

        async with self.lock.hold() as acquired:
            if not acquired:
                return SweepResult(skipped=True)

            async with store_guard("escalation sweep"):
                escalated = await self.escalate_breaches(db, timestamp)
                rescheduled = await self.reschedule_stale(db, timestamp)

        result = SweepResult(escalated, rescheduled)
        logger.info(
            f"Escalation sweep complete: {escalated} escalated, {rescheduled} rescheduled",
            extra={"escalated_count": escalated, "rescheduled_count": rescheduled},
        )
        return result

    # === Breach scan ===

    async def escalate_breaches(self, db: AsyncSession, now: datetime) -> int:
        threshold = now - timedelta(minutes=self.settings.sla_minutes)

        async with transaction(db):
            result = await db.execute(
                select(Incident.id)
                .where(
                    Incident.status.in_(OPEN_STATUSES),
                    Incident.escalated.is_(False),
                    Incident.created_at < threshold,
                )
                .order_by(Incident.created_at.asc())
            )
            incident_ids = list(result.scalars().all())

            admins = await db.execute(select(User.id).where(User.role == UserRole.ADMIN))
            admin_ids = list(admins.scalars().all())

        escalated = 0
        for incident_id in incident_ids:
            try:
                async with transaction(db):
                    if await self._escalate_one(db, incident_id, admin_ids, now):
                        escalated += 1
            except StoreUnavailableError:
                raise
            except DispatchError as e:
                logger.error(f"Failed to escalate incident {incident_id}: {e}")
        return escalated

    async def _escalate_one(
        self,
        db: AsyncSession,
        incident_id: UUID,
        admin_ids: list[UUID],
        now: datetime,
    ) -> bool:
        result = await db.execute(
            update(Incident)
            .where(Incident.id == incident_id, Incident.escalated.is_(False))
            .values(escalated=True, escalated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Escalated by a concurrent sweep since the scan
            return False

        incident = await db.get(Incident, incident_id)
        await db.refresh(incident, attribute_names=["escalated", "escalated_at"])
        age = age_minutes(incident.created_at, now)

        await event_logger.log_sla_breached(
            db,
            incident_id=incident.id,
            sla_minutes=self.settings.sla_minutes,
            age_minutes=age,
            actor=SWEEP_ACTOR,
        )

        if incident.reported_by is not None:
            await self.sink.notify_sla_exceeded(
                db, user_id=incident.reported_by, incident_id=incident.id, title=incident.title
            )
        for admin_id in admin_ids:
            await self.sink.notify_escalation(
                db,
                admin_id=admin_id,
                incident_id=incident.id,
                title=incident.title,
                sla_minutes=self.settings.sla_minutes,
                age_minutes=age,
            )

        logger.warning(
            f"Incident {incident.id} escalated: {age} minutes old, "
            f"SLA {self.settings.sla_minutes} minutes",
            extra={"incident_id": str(incident.id)},
        )
        return True

    # === Reschedule scan ===

    async def reschedule_stale(self, db: AsyncSession, now: datetime) -> int:
        async with transaction(db):
            result = await db.execute(
                select(Schedule.id)
                .join(Technician, Schedule.technician_id == Technician.id)
                .where(
                    Schedule.status == ScheduleStatus.SCHEDULED,
                    Schedule.scheduled_time >= now,
                    or_(Technician.available.is_(False), Technician.active.is_(False)),
                )
                .order_by(Schedule.scheduled_time.asc())
            )
            schedule_ids = list(result.scalars().all())

        rescheduled = 0
        for schedule_id in schedule_ids:
            try:
                async with transaction(db):
                    if await self._reschedule_one(db, schedule_id, now):
                        rescheduled += 1
            except StoreUnavailableError:
                raise
            except DispatchError as e:
                logger.error(f"Failed to reschedule {schedule_id}: {e}")
        return rescheduled

    async def _reschedule_one(self, db: AsyncSession, schedule_id: UUID, now: datetime) -> bool:
        schedule = await db.get(Schedule, schedule_id)
        if schedule is None or schedule.status != ScheduleStatus.SCHEDULED:
            return False

        incident = await db.get(Incident, schedule.incident_id)
        if incident is None or not incident.is_open:
            logger.debug(f"Schedule {schedule_id} belongs to a closed incident, leaving it")
            return False

        replacement = await self.engine.reassign(db, schedule, now, actor=SWEEP_ACTOR)
        return replacement is not None


# Global instance
escalation_sweep = EscalationSweep()
