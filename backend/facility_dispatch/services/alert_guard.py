"""
Deduplication & Cooldown Guard.

Suppresses repeat auto-assignment for the same (location, category):

- Pairs compare trimmed and case-insensitive, the same key the lock uses
- Cooldown: an incident for the pair was *assigned* within the last
  cooldown_period_hours
- Duplicate window: an *open* incident for the pair was created within the
  last deduplication_window_hours

Both checks run before a new incident is created. On PostgreSQL the pair
is serialized with a transaction-scoped advisory lock so two identical
alerts arriving together cannot both pass the checks.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.config import Settings, get_settings
from facility_dispatch.models import utcnow
from facility_dispatch.models.incident import OPEN_STATUSES, Incident
from facility_dispatch.models.incident_event import IncidentEventType
from facility_dispatch.services.event_logger import event_logger

logger = logging.getLogger(__name__)


def normalize_key(value: str) -> str:
    return value.strip().lower()


def pair_key(location: str, category: str) -> str:
    return f"{normalize_key(location)}|{normalize_key(category)}"


def _same_pair(location: str, category: str) -> list:
    """Pair filter matching the advisory lock key: trimmed, case-insensitive."""
    return [
        func.lower(func.trim(Incident.location)) == normalize_key(location),
        func.lower(func.trim(Incident.category)) == normalize_key(category),
    ]


class AlertGuard:
    """Cooldown and duplicate-window lookups for one (location, category)."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def lock_pair(self, db: AsyncSession, location: str, category: str) -> None:
        """
        Hold a transaction-scoped advisory lock on the pair (PostgreSQL only).

        Released automatically at commit/rollback. Other dialects rely on
        the single-writer nature of the backend (SQLite serializes writes).
        """
        if db.get_bind().dialect.name != "postgresql":
            return
        await db.execute(
            select(func.pg_advisory_xact_lock(func.hashtext(pair_key(location, category))))
        )

    async def find_cooldown_incident(
        self,
        db: AsyncSession,
        location: str,
        category: str,
        now: Optional[datetime] = None,
    ) -> Optional[Incident]:
        """Most recent incident for the pair assigned within the cooldown window."""
        check_time = now or utcnow()
        cutoff = check_time - timedelta(hours=self.settings.cooldown_period_hours)

        stmt = (
            select(Incident)
            .where(
                *_same_pair(location, category),
                Incident.assigned_at.is_not(None),
                Incident.assigned_at >= cutoff,
            )
            .order_by(Incident.assigned_at.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_open_duplicate(
        self,
        db: AsyncSession,
        location: str,
        category: str,
        now: Optional[datetime] = None,
    ) -> Optional[Incident]:
        """Oldest open incident for the pair created within the duplicate window."""
        check_time = now or utcnow()
        cutoff = check_time - timedelta(hours=self.settings.deduplication_window_hours)

        stmt = (
            select(Incident)
            .where(
                *_same_pair(location, category),
                Incident.status.in_(OPEN_STATUSES),
                Incident.created_at >= cutoff,
            )
            .order_by(Incident.created_at.asc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def is_in_cooldown(
        self,
        db: AsyncSession,
        location: str,
        category: str,
        now: Optional[datetime] = None,
    ) -> bool:
        return await self.find_cooldown_incident(db, location, category, now) is not None

    async def has_open_duplicate(
        self,
        db: AsyncSession,
        location: str,
        category: str,
        now: Optional[datetime] = None,
    ) -> bool:
        return await self.find_open_duplicate(db, location, category, now) is not None

    async def annotate_duplicate(
        self,
        db: AsyncSession,
        incident: Incident,
        alert_payload: dict,
        now: Optional[datetime] = None,
    ) -> Incident:
        """
        Record a suppressed alert on the incident that already represents it.

        The first responder keeps the incident; the new alert only bumps
        duplicate_count / last_duplicate_at and lands on the timeline.
        """
        timestamp = now or utcnow()
        context = dict(incident.context or {})
        context["duplicate_count"] = context.get("duplicate_count", 0) + 1
        context["last_duplicate_at"] = timestamp.isoformat()
        # Reassign so the JSON column is flagged dirty
        incident.context = context

        await event_logger.log(
            db=db,
            incident_id=incident.id,
            event_type=IncidentEventType.DUPLICATE_SUPPRESSED,
            description=(
                f"Duplicate alert for {incident.location}/{incident.category} "
                f"suppressed (#{context['duplicate_count']})"
            ),
            metadata={"alert": alert_payload},
        )

        logger.info(
            f"Duplicate alert attached to incident {incident.id} "
            f"(count={context['duplicate_count']})"
        )
        return incident


# Global instance
alert_guard = AlertGuard()
