"""
Technician Directory: read model of technician capacity and availability.

Note:
- current_assignments changes only through single conditional UPDATE
  statements, so two concurrent assignments cannot both pass the
  capacity check (compare-and-set evaluated by the database)
- Decrements clamp at zero in the same statement
"""
import logging
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.config import Settings, get_settings
from facility_dispatch.errors import CapacityExceededError, NotFoundError, ValidationError
from facility_dispatch.models.technician import DEFAULT_SPECIALIZATION, Technician
from facility_dispatch.utils.identifiers import parse_id

logger = logging.getLogger(__name__)


class TechnicianDirectory:
    """Reads and capacity accounting for technicians."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def list_technicians(self, db: AsyncSession) -> list[Technician]:
        """
        All technicians with normalized defaults, in stable directory order
        (creation time, then id).
        """
        stmt = select(Technician).order_by(Technician.created_at, Technician.id)
        result = await db.execute(stmt)
        return [
            t.normalize(self.settings.default_max_concurrent)
            for t in result.scalars().all()
        ]

    async def get_technician(
        self,
        db: AsyncSession,
        technician_id: Union[str, UUID],
        for_update: bool = False,
    ) -> Technician:
        """
        Fetch one technician.

        Raises:
            ValidationError: malformed id
            NotFoundError: unknown id
        """
        tech_id = parse_id(technician_id, "technician id")
        stmt = select(Technician).where(Technician.id == tech_id)
        if for_update:
            # Serializes schedule creation per technician
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        technician = result.scalar_one_or_none()
        if technician is None:
            raise NotFoundError("technician", tech_id)
        return technician.normalize(self.settings.default_max_concurrent)

    async def adjust_assignment_count(
        self,
        db: AsyncSession,
        technician_id: Union[str, UUID],
        delta: int,
    ) -> int:
        """
        Atomically change current_assignments by `delta`.

        Increments succeed only while the result stays within
        max_concurrent (CapacityExceededError otherwise). Decrements clamp
        at zero. Returns the new count.
        """
        tech_id = parse_id(technician_id, "technician id")

        if delta > 0:
            stmt = (
                update(Technician)
                .where(
                    Technician.id == tech_id,
                    Technician.current_assignments + delta <= Technician.max_concurrent,
                )
                .values(current_assignments=Technician.current_assignments + delta)
                .execution_options(synchronize_session=False)
            )
        else:
            stmt = (
                update(Technician)
                .where(Technician.id == tech_id)
                .values(
                    current_assignments=case(
                        (Technician.current_assignments + delta < 0, 0),
                        else_=Technician.current_assignments + delta,
                    )
                )
                .execution_options(synchronize_session=False)
            )

        result = await db.execute(stmt)
        updated = result.rowcount

        technician = await db.get(Technician, tech_id)
        if technician is None:
            raise NotFoundError("technician", tech_id)
        # Bring the identity-mapped instance in line with the row without dirtying it
        await db.refresh(technician, attribute_names=["current_assignments", "max_concurrent"])

        if updated == 0:
            raise CapacityExceededError(
                f"Technician {technician.name} is at capacity "
                f"({technician.current_assignments}/{technician.max_concurrent})"
            )

        logger.debug(
            f"Technician {tech_id} assignment count {delta:+d} -> {technician.current_assignments}"
        )
        return technician.current_assignments

    async def reserve_capacity(self, db: AsyncSession, technician_id: UUID) -> int:
        return await self.adjust_assignment_count(db, technician_id, 1)

    async def release_capacity(self, db: AsyncSession, technician_id: UUID) -> int:
        return await self.adjust_assignment_count(db, technician_id, -1)

    async def set_availability(
        self,
        db: AsyncSession,
        technician_id: Union[str, UUID],
        available: Optional[bool] = None,
        active: Optional[bool] = None,
    ) -> Technician:
        technician = await self.get_technician(db, technician_id)
        if available is not None:
            technician.available = available
        if active is not None:
            technician.active = active
        await db.flush()
        logger.info(
            f"Technician {technician.name} availability updated: "
            f"active={technician.active}, available={technician.available}"
        )
        return technician

    async def create_technician(
        self,
        db: AsyncSession,
        name: str,
        email: str,
        specialization: str = DEFAULT_SPECIALIZATION,
        max_concurrent: Optional[int] = None,
    ) -> Technician:
        """Register a technician. Raises ValidationError on a duplicate email."""
        existing = await db.execute(select(Technician.id).where(Technician.email == email))
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(f"Technician with email {email} already exists")

        technician = Technician(
            name=name,
            email=email,
            specialization=specialization or DEFAULT_SPECIALIZATION,
            max_concurrent=max_concurrent or self.settings.default_max_concurrent,
        )
        db.add(technician)
        await db.flush()
        logger.info(
            "Technician created",
            extra={"technician_id": str(technician.id), "email": email},
        )
        return technician


# Global instance
technician_directory = TechnicianDirectory()
