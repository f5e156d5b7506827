"""Aging report over stored incidents (read-only)."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.config import Settings, get_settings
from facility_dispatch.core.analytics.aging import AgingAnalysis, analyze_ages
from facility_dispatch.models import utcnow
from facility_dispatch.models.incident import Incident, IncidentStatus

logger = logging.getLogger(__name__)


class AgingAnalysisService:

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def get_aging_analysis(
        self,
        db: AsyncSession,
        status: Optional[IncidentStatus] = None,
        category: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AgingAnalysis:
        """Bucket incidents matching the filters by age and count SLA breaches."""
        stmt = select(Incident.id, Incident.created_at)
        if status is not None:
            stmt = stmt.where(Incident.status == status)
        if category:
            stmt = stmt.where(Incident.category == category.lower())

        result = await db.execute(stmt)
        analysis = analyze_ages(
            ((row.id, row.created_at) for row in result),
            now=now or utcnow(),
            sla_minutes=self.settings.sla_minutes,
            warning_ratio=self.settings.sla_warning_ratio,
        )
        logger.debug(
            f"Aging analysis: {analysis.total} incidents, {analysis.sla_breaches} breaches"
        )
        return analysis


# Global instance
aging_analysis_service = AgingAnalysisService()
