"""
Assignment Engine.

Turns an alert into an assigned, SLA-tracked incident:

1. Validate the alert
2. Quality gate (predictions only)
3. Cooldown: pair assigned within the cooldown window -> stop
4. Duplicate window: open incident for the pair -> annotate it, stop
5. Create the incident
6. Select a technician (category -> specialization, FIRST_MATCH)
7. Reserve a daily rate-limit slot (predictions only)
8. Reserve technician capacity (lost race -> next candidate)
9. Book a work slot shortly after `now`
10. Stamp assignment + SLA fields, notify the technician

Each alert is one transaction. Refusals (gate, cooldown, duplicate, rate
limit, nobody available) are SubmissionResult outcomes, not exceptions.
An incident created before a refusal stays in place, unassigned, for
later triage.
"""
import enum
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.config import Settings, get_settings
from facility_dispatch.core.intake.quality_gate import QualityGate
from facility_dispatch.core.matching.technician_matcher import (
    MatchStrategy,
    rank_candidates,
    select_technician,
)
from facility_dispatch.errors import (
    CapacityExceededError,
    DispatchError,
    OverlapError,
    StoreUnavailableError,
    TechnicianUnavailableError,
    ValidationError,
)
from facility_dispatch.models import utcnow
from facility_dispatch.models.incident import Incident, IncidentSource, IncidentStatus
from facility_dispatch.models.incident_event import IncidentEventType
from facility_dispatch.models.schedule import Schedule, ScheduleStatus
from facility_dispatch.models.technician import Technician
from facility_dispatch.schemas.alert import AlertIn
from facility_dispatch.services.alert_guard import AlertGuard
from facility_dispatch.services.assignment_rate_limiter import AssignmentRateLimiter
from facility_dispatch.services.event_logger import event_logger
from facility_dispatch.services.incident_repository import IncidentRepository, default_title
from facility_dispatch.services.notification_service import (
    NotificationService,
    notification_service,
)
from facility_dispatch.services.schedule_store import SLOT_MISSING_KEY, ScheduleStore
from facility_dispatch.services.technician_directory import TechnicianDirectory
from facility_dispatch.utils.transactions import store_guard, transaction

logger = logging.getLogger(__name__)

CRITICAL_PRIORITY = 5

# (title, description, category) -> priority 1-5
PriorityClassifier = Callable[[str, str, str], int]


class SubmissionOutcome(str, enum.Enum):
    ACCEPTED = "accepted"
    QUALITY_GATE_REJECTED = "quality_gate_rejected"
    COOLDOWN_ACTIVE = "cooldown_active"
    DUPLICATE_WINDOW_ACTIVE = "duplicate_window_active"
    NO_TECHNICIAN_AVAILABLE = "no_technician_available"
    RATE_LIMITED = "rate_limited"


class SubmissionResult:
    """Result of submitting one alert."""

    def __init__(
        self,
        outcome: SubmissionOutcome,
        reason: Optional[str] = None,
        incident_id: Optional[UUID] = None,
        technician_id: Optional[UUID] = None,
        sla_deadline: Optional[datetime] = None,
        schedule_id: Optional[UUID] = None,
    ):
        self.outcome = outcome
        self.reason = reason
        self.incident_id = incident_id
        self.technician_id = technician_id
        self.sla_deadline = sla_deadline
        self.schedule_id = schedule_id

    @property
    def accepted(self) -> bool:
        return self.outcome == SubmissionOutcome.ACCEPTED

    def to_public(self) -> Optional[dict]:
        """The caller-facing assignment, or None when nothing was assigned."""
        if not self.accepted:
            return None
        return {
            "incident_id": str(self.incident_id),
            "technician_id": str(self.technician_id),
            "sla_deadline": self.sla_deadline.isoformat(),
        }

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "accepted": self.accepted,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "incident_id": str(self.incident_id) if self.incident_id else None,
            "technician_id": str(self.technician_id) if self.technician_id else None,
            "sla_deadline": self.sla_deadline.isoformat() if self.sla_deadline else None,
            "schedule_id": str(self.schedule_id) if self.schedule_id else None,
        }

    def __repr__(self) -> str:
        return f"<SubmissionResult(outcome={self.outcome.value}, incident_id={self.incident_id})>"


class BatchResult:
    """Result of processing a list of alerts."""

    def __init__(self):
        self.assigned = 0
        self.failed = 0
        self.results: list[dict] = []

    def record(self, alert: Any, result: Optional[SubmissionResult] = None, error: Optional[str] = None):
        location = _field(alert, "location")
        category = _field(alert, "category")
        if result is not None and result.accepted:
            self.assigned += 1
        else:
            self.failed += 1
        self.results.append({
            "location": location,
            "category": category,
            "success": result is not None and result.accepted,
            "outcome": result.outcome.value if result else None,
            "incident_id": str(result.incident_id) if result and result.incident_id else None,
            "technician_id": str(result.technician_id) if result and result.technician_id else None,
            "error": error or (result.reason if result and not result.accepted else None),
        })

    def to_dict(self) -> dict:
        return {"assigned": self.assigned, "failed": self.failed, "results": self.results}


def _field(alert: Any, name: str) -> Optional[str]:
    if isinstance(alert, dict):
        return alert.get(name)
    return getattr(alert, name, None)


class AssignmentEngine:
    """Alert -> incident -> technician, under gates and limits."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        sink: Optional[NotificationService] = None,
        classifier: Optional[PriorityClassifier] = None,
    ):
        self.settings = settings or get_settings()
        self.sink = sink or notification_service
        self.classifier = classifier
        self.gate = QualityGate.from_settings(self.settings)
        self.guard = AlertGuard(self.settings)
        self.rate_limiter = AssignmentRateLimiter(self.settings)
        self.directory = TechnicianDirectory(self.settings)
        self.schedules = ScheduleStore(self.settings, self.directory, self.sink)
        self.incidents = IncidentRepository()

    @staticmethod
    def parse_alert(alert: Union[AlertIn, dict]) -> AlertIn:
        """Coerce to AlertIn; malformed input raises ValidationError."""
        if isinstance(alert, AlertIn):
            return alert
        try:
            return AlertIn.model_validate(alert)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid alert: {e.errors(include_url=False)}") from e

    def _priority_for(self, alert: AlertIn, title: str) -> int:
        if self.classifier is None:
            return self.settings.default_priority
        try:
            score = int(self.classifier(title, alert.description, alert.category))
        except Exception as e:
            logger.warning(f"Priority classifier failed, using default: {e}")
            return self.settings.default_priority
        return min(max(score, 1), 5)

    async def submit_alert(
        self,
        db: AsyncSession,
        alert: Union[AlertIn, dict],
        now: Optional[datetime] = None,
    ) -> SubmissionResult:
        """
        Process one alert in its own transaction.

        Args:
            db: Database session (no transaction open)
            alert: AlertIn or a dict with the same fields
            now: Evaluation time, naive UTC (defaults to current time)

        Returns:
            SubmissionResult; to_public() gives the assignment or None

        Raises:
            ValidationError: malformed alert, nothing written
            StoreUnavailableError: store timeout or connection loss
        """
        parsed = self.parse_alert(alert)
        timestamp = now or utcnow()

        async with store_guard("alert submission"):
            async with transaction(db):
                result = await self._submit(db, parsed, timestamp)

        logger.info(
            f"Alert {parsed.location}/{parsed.category}: {result.outcome.value}",
            extra={
                "outcome": result.outcome.value,
                "incident_id": str(result.incident_id) if result.incident_id else None,
            },
        )
        return result

    async def _submit(self, db: AsyncSession, alert: AlertIn, now: datetime) -> SubmissionResult:
        if alert.source == IncidentSource.PREDICTION:
            decision = self.gate.evaluate(alert)
            if not decision:
                return SubmissionResult(SubmissionOutcome.QUALITY_GATE_REJECTED, decision.reason)

        await self.guard.lock_pair(db, alert.location, alert.category)

        recent = await self.guard.find_cooldown_incident(db, alert.location, alert.category, now)
        if recent is not None:
            return SubmissionResult(
                SubmissionOutcome.COOLDOWN_ACTIVE,
                f"{alert.location}/{alert.category} assigned at {recent.assigned_at.isoformat()} "
                f"(cooldown {self.settings.cooldown_period_hours}h)",
                incident_id=recent.id,
            )

        existing = await self.guard.find_open_duplicate(db, alert.location, alert.category, now)
        if existing is not None:
            await self.guard.annotate_duplicate(db, existing, alert.payload(), now)
            return SubmissionResult(
                SubmissionOutcome.DUPLICATE_WINDOW_ACTIVE,
                f"Open incident {existing.id} already covers {alert.location}/{alert.category}",
                incident_id=existing.id,
            )

        title = alert.title or default_title(alert.source, alert.location, alert.category)
        incident = await self.incidents.create_from_alert(
            db,
            location=alert.location,
            category=alert.category,
            source=alert.source,
            priority=self._priority_for(alert, title),
            title=title,
            description=alert.description,
            reported_by=alert.reported_by,
            context={"alert": alert.payload()},
            now=now,
        )
        technician, refusal = await self._reserve_technician(db, incident, now)
        if technician is None:
            outcome, reason = refusal
            await event_logger.log(
                db=db,
                incident_id=incident.id,
                event_type=IncidentEventType.ASSIGNMENT_DEFERRED,
                description=reason,
                metadata={"outcome": outcome.value},
            )
            return SubmissionResult(outcome, reason, incident_id=incident.id)

        schedule = await self._book_slot(db, incident, technician, now)
        sla_deadline = self._assign(incident, technician, now)

        await event_logger.log_assigned(
            db,
            incident_id=incident.id,
            technician_id=technician.id,
            technician_label=f"{technician.name} ({technician.specialization})",
            sla_deadline=sla_deadline,
            strategy=MatchStrategy.FIRST_MATCH,
        )

        await self.sink.notify_technician_assignment(
            db,
            technician_id=technician.id,
            incident_id=incident.id,
            title=incident.title,
            location=incident.location,
            sla_deadline=sla_deadline,
            sla_minutes=self.settings.sla_minutes,
        )

        return SubmissionResult(
            SubmissionOutcome.ACCEPTED,
            incident_id=incident.id,
            technician_id=technician.id,
            sla_deadline=sla_deadline,
            schedule_id=schedule.id if schedule else None,
        )

    async def _reserve_technician(
        self,
        db: AsyncSession,
        incident: Incident,
        now: datetime,
    ) -> tuple[Optional[Technician], Optional[tuple[SubmissionOutcome, str]]]:
        """
        Pick a technician and reserve capacity, plus a daily slot when the
        incident is an automatic (prediction) assignment. Human reports do
        not count toward the daily caps.

        Returns (technician, None) or (None, (outcome, reason)).
        """
        technicians = await self.directory.list_technicians(db)
        excluded: set[UUID] = set()
        counted = incident.source == IncidentSource.PREDICTION

        while True:
            technician = select_technician(
                technicians, incident.category, MatchStrategy.FIRST_MATCH, excluded
            )
            if technician is None:
                return None, (
                    SubmissionOutcome.NO_TECHNICIAN_AVAILABLE,
                    f"No available technician for category {incident.category}",
                )

            if counted:
                limit = await self.rate_limiter.acquire(db, technician.id, now)
                if not limit:
                    return None, (SubmissionOutcome.RATE_LIMITED, limit.reason)

            try:
                await self.directory.reserve_capacity(db, technician.id)
            except CapacityExceededError:
                # Another assignment took the last slot since the directory was read
                if counted:
                    await self.rate_limiter.release(db, technician.id, now)
                excluded.add(technician.id)
                logger.info(f"Lost capacity race for {technician.name}, trying next candidate")
                continue

            return technician, None

    async def _book_slot(
        self,
        db: AsyncSession,
        incident: Incident,
        technician: Technician,
        now: datetime,
    ) -> Optional[Schedule]:
        duration = self.settings.default_schedule_duration_minutes
        earliest = now + timedelta(minutes=self.settings.schedule_lead_minutes)
        try:
            start = await self.schedules.find_free_slot(db, technician.id, earliest, duration)
            return await self.schedules.create_schedule(
                db,
                technician_id=technician.id,
                incident_id=incident.id,
                scheduled_time=start,
                duration_minutes=duration,
                capacity_reserved=True,
            )
        except (OverlapError, TechnicianUnavailableError, CapacityExceededError) as e:
            # Assignment stands and keeps its capacity; a later manual slot reuses it
            logger.error(f"Failed to create schedule for incident {incident.id}: {e}")
            incident.context = {**(incident.context or {}), SLOT_MISSING_KEY: True}
            await event_logger.log(
                db=db,
                incident_id=incident.id,
                event_type=IncidentEventType.SLOT_UNAVAILABLE,
                description=f"No work slot booked for {technician.name}: {e}",
                metadata={"technician_id": str(technician.id)},
            )
            return None

    def _assign(self, incident: Incident, technician: Technician, now: datetime) -> datetime:
        sla_deadline = now + timedelta(minutes=self.settings.sla_minutes)
        incident.assigned_technician_id = technician.id
        incident.assigned_at = now
        incident.sla_started_at = now
        incident.sla_deadline = sla_deadline
        incident.priority = CRITICAL_PRIORITY
        if incident.status != IncidentStatus.RESOLVED:
            incident.transition_to(IncidentStatus.IN_PROGRESS)
        return sla_deadline

    async def process_alerts(
        self,
        db: AsyncSession,
        alerts: list[Union[AlertIn, dict]],
        now: Optional[datetime] = None,
    ) -> BatchResult:
        """
        Submit alerts one by one; a failing alert does not stop the batch.

        Raises:
            StoreUnavailableError: store outage aborts the rest of the batch
        """
        batch = BatchResult()
        for alert in alerts:
            try:
                result = await self.submit_alert(db, alert, now)
            except StoreUnavailableError:
                raise
            except DispatchError as e:
                logger.error(f"Alert {_field(alert, 'location')}/{_field(alert, 'category')} failed: {e}")
                batch.record(alert, error=str(e))
                continue
            batch.record(alert, result)

        logger.info(f"Processed {len(alerts)} alerts: {batch.assigned} assigned, {batch.failed} not")
        return batch

    async def reassign(
        self,
        db: AsyncSession,
        schedule: Schedule,
        now: Optional[datetime] = None,
        actor: str = "escalation-sweep",
    ) -> Optional[Schedule]:
        """
        Move a scheduled slot away from its technician.

        Picks the least-loaded eligible technician (excluding the current
        one) who is free at the slot time, books the same slot for them,
        cancels the old slot and repoints the incident. Returns the new
        schedule, or None when nobody can take it.
        """
        timestamp = now or utcnow()
        incident = await self.incidents.get(db, schedule.incident_id)
        technicians = await self.directory.list_technicians(db)

        replacement = None
        for candidate in rank_candidates(
            technicians,
            incident.category,
            MatchStrategy.LEAST_LOADED,
            exclude={schedule.technician_id},
        ):
            if await self.schedules.has_overlap(
                db, candidate.id, schedule.scheduled_time, schedule.duration_minutes
            ):
                continue
            try:
                replacement = await self.schedules.create_schedule(
                    db,
                    technician_id=candidate.id,
                    incident_id=incident.id,
                    scheduled_time=schedule.scheduled_time,
                    duration_minutes=schedule.duration_minutes,
                    actor=actor,
                )
            except (CapacityExceededError, OverlapError, TechnicianUnavailableError) as e:
                logger.info(f"Candidate {candidate.name} refused slot: {e}")
                continue
            new_technician = candidate
            break

        if replacement is None:
            logger.warning(f"No replacement technician for schedule {schedule.id}")
            return None

        previous_technician_id = schedule.technician_id
        await self.schedules.update_schedule_status(
            db, schedule.id, ScheduleStatus.CANCELLED, now=timestamp, actor=actor
        )
        incident.assigned_technician_id = new_technician.id
        await event_logger.log_reassigned(
            db,
            incident_id=incident.id,
            cancelled_schedule_id=schedule.id,
            replacement_schedule_id=replacement.id,
            from_technician_id=previous_technician_id,
            to_technician_id=new_technician.id,
            to_technician_name=new_technician.name,
            actor=actor,
        )

        await self.sink.notify_technician_assignment(
            db,
            technician_id=new_technician.id,
            incident_id=incident.id,
            title=incident.title,
            location=incident.location,
            sla_deadline=incident.sla_deadline,
        )

        logger.info(
            f"Rescheduled incident {incident.id} from {previous_technician_id} "
            f"to {new_technician.name}"
        )
        return replacement


# Global instance
assignment_engine = AssignmentEngine()
