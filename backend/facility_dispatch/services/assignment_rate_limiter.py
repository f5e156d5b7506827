"""
Per-day auto-assignment limits.

Two counters per UTC day:
- one per technician (max_assignments_per_technician_per_day)
- one for the whole system (max_system_wide_assignments_per_day)

The check-and-increment is a single conditional UPDATE
(count = count + 1 WHERE count < cap) evaluated by the database, so
concurrent submissions cannot push a counter past its cap. Counter rows
are created with INSERT ... ON CONFLICT DO NOTHING.

Day buckets reset naturally at UTC midnight; old rows are removed with
prune_before().
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.config import Settings, get_settings
from facility_dispatch.models import utcnow
from facility_dispatch.models.rate_limit_counter import SYSTEM_SUBJECT, RateLimitCounter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


def _subject(technician_id: Union[str, UUID]) -> str:
    return str(technician_id)


class AssignmentRateLimiter:
    """Database-backed daily counters for automatic assignments."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    @property
    def technician_cap(self) -> int:
        return self.settings.max_assignments_per_technician_per_day

    @property
    def system_cap(self) -> int:
        return self.settings.max_system_wide_assignments_per_day

    async def _count(self, db: AsyncSession, subject: str, day: date) -> int:
        stmt = select(RateLimitCounter.count).where(
            RateLimitCounter.subject == subject,
            RateLimitCounter.day == day,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() or 0

    async def check_rate_limits(
        self,
        db: AsyncSession,
        technician_id: Union[str, UUID],
        now: Optional[datetime] = None,
    ) -> RateLimitDecision:
        """Read-only view of whether one more assignment would be allowed."""
        day = (now or utcnow()).date()

        tech_count = await self._count(db, _subject(technician_id), day)
        if tech_count >= self.technician_cap:
            return RateLimitDecision(
                False,
                f"Technician {technician_id} reached {self.technician_cap} assignments today",
            )

        system_count = await self._count(db, SYSTEM_SUBJECT, day)
        if system_count >= self.system_cap:
            return RateLimitDecision(
                False,
                f"System reached {self.system_cap} automatic assignments today",
            )

        return RateLimitDecision(True)

    async def _ensure_row(self, db: AsyncSession, subject: str, day: date) -> None:
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            raise NotImplementedError(f"Rate limit counters not supported on {dialect}")

        stmt = (
            insert(RateLimitCounter)
            .values(subject=subject, day=day, count=0)
            .on_conflict_do_nothing(index_elements=["subject", "day"])
        )
        await db.execute(stmt)

    async def _try_increment(
        self,
        db: AsyncSession,
        subject: str,
        day: date,
        cap: int,
    ) -> bool:
        await self._ensure_row(db, subject, day)
        stmt = (
            update(RateLimitCounter)
            .where(
                RateLimitCounter.subject == subject,
                RateLimitCounter.day == day,
                RateLimitCounter.count < cap,
            )
            .values(count=RateLimitCounter.count + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    async def _decrement(self, db: AsyncSession, subject: str, day: date) -> None:
        stmt = (
            update(RateLimitCounter)
            .where(
                RateLimitCounter.subject == subject,
                RateLimitCounter.day == day,
                RateLimitCounter.count > 0,
            )
            .values(count=RateLimitCounter.count - 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)

    async def acquire(
        self,
        db: AsyncSession,
        technician_id: Union[str, UUID],
        now: Optional[datetime] = None,
    ) -> RateLimitDecision:
        """
        Reserve one assignment slot for the technician and the system.

        Either both counters move or neither does.
        """
        day = (now or utcnow()).date()
        subject = _subject(technician_id)

        if not await self._try_increment(db, subject, day, self.technician_cap):
            logger.info(f"Rate limited: technician {technician_id} at daily cap")
            return RateLimitDecision(
                False,
                f"Technician {technician_id} reached {self.technician_cap} assignments today",
            )

        if not await self._try_increment(db, SYSTEM_SUBJECT, day, self.system_cap):
            await self._decrement(db, subject, day)
            logger.info("Rate limited: system-wide daily cap reached")
            return RateLimitDecision(
                False,
                f"System reached {self.system_cap} automatic assignments today",
            )

        return RateLimitDecision(True)

    async def release(
        self,
        db: AsyncSession,
        technician_id: Union[str, UUID],
        now: Optional[datetime] = None,
    ) -> None:
        """Give back a slot taken by acquire() for an assignment that did not happen."""
        day = (now or utcnow()).date()
        await self._decrement(db, _subject(technician_id), day)
        await self._decrement(db, SYSTEM_SUBJECT, day)

    async def prune_before(self, db: AsyncSession, day: date) -> int:
        """Delete counter rows for days before `day`. Returns rows removed."""
        result = await db.execute(
            delete(RateLimitCounter).where(RateLimitCounter.day < day)
        )
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Pruned {removed} rate limit counters before {day.isoformat()}")
        return removed


# Global instance
assignment_rate_limiter = AssignmentRateLimiter()
