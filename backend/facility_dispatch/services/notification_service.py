"""
Notification sink for dispatch messages.

Note:
- Fire-and-forget: notify() never raises; a failed notification must
  not abort the assignment or escalation that produced it
- In-app record is added to the caller's session and commits with it
- Optional webhook fan-out over httpx with a hard timeout; transport
  errors are retried with backoff (tenacity)
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from facility_dispatch.config import Settings, get_settings
from facility_dispatch.models.notification import Notification, NotificationType

logger = logging.getLogger(__name__)


class NotificationService:
    """In-app notifications with optional webhook delivery."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.webhook_url = self.settings.notification_webhook_url
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.notification_timeout_seconds,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def notify(
        self,
        db: AsyncSession,
        user_id: UUID,
        type: NotificationType,
        message: str,
        metadata: Optional[dict] = None,
    ) -> Optional[Notification]:
        """
        Record and deliver a notification.

        Returns the Notification, or None if it could not be recorded.
        """
        metadata = metadata or {}
        try:
            notification = Notification(
                user_id=user_id,
                type=type,
                message=message,
                payload=metadata,
                incident_id=_incident_id(metadata),
            )
            db.add(notification)
        except Exception as e:
            logger.error(
                f"Failed to record {type.value} notification for {user_id}: {e}",
                exc_info=True,
            )
            return None

        if self.webhook_url:
            await self._deliver_webhook(user_id, type, message, metadata)

        logger.info(
            f"Notification queued: {type.value} -> {user_id}",
            extra={"user_id": str(user_id), "notification_type": type.value},
        )
        return notification

    async def _deliver_webhook(
        self,
        user_id: UUID,
        type: NotificationType,
        message: str,
        metadata: dict,
    ) -> bool:
        try:
            await self._post_webhook({
                "user_id": str(user_id),
                "type": type.value,
                "message": message,
                "metadata": metadata,
            })
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Webhook delivery failed for {type.value} -> {user_id}: {e}")
            return False

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _post_webhook(self, body: dict) -> None:
        response = await self._get_client().post(self.webhook_url, json=body)
        response.raise_for_status()

    # === Convenience methods for common messages ===

    async def notify_technician_assignment(
        self,
        db: AsyncSession,
        technician_id: UUID,
        incident_id: UUID,
        title: str,
        location: str,
        sla_deadline: Optional[datetime] = None,
        sla_minutes: Optional[int] = None,
    ) -> Optional[Notification]:
        message = f'You have been assigned to incident: "{title}" at {location}'
        if sla_minutes:
            message += f". SLA: {sla_minutes} minutes."
        metadata = {"incident_id": str(incident_id), "location": location}
        if sla_deadline is not None:
            metadata["sla_deadline"] = sla_deadline.isoformat()
        return await self.notify(
            db,
            user_id=technician_id,
            type=NotificationType.TECHNICIAN_ASSIGNED,
            message=message,
            metadata=metadata,
        )

    async def notify_schedule_created(
        self,
        db: AsyncSession,
        technician_id: UUID,
        incident_id: UUID,
        title: str,
        schedule_id: UUID,
        scheduled_time: datetime,
    ) -> Optional[Notification]:
        return await self.notify(
            db,
            user_id=technician_id,
            type=NotificationType.TECHNICIAN_ASSIGNED,
            message=(
                f'You have been scheduled for incident "{title}" '
                f"at {scheduled_time.isoformat()}"
            ),
            metadata={
                "incident_id": str(incident_id),
                "schedule_id": str(schedule_id),
                "scheduled_time": scheduled_time.isoformat(),
            },
        )

    async def notify_sla_exceeded(
        self,
        db: AsyncSession,
        user_id: UUID,
        incident_id: UUID,
        title: str,
    ) -> Optional[Notification]:
        return await self.notify(
            db,
            user_id=user_id,
            type=NotificationType.SLA_EXCEEDED,
            message=f'Alert: SLA exceeded for incident "{title}". Escalating...',
            metadata={"incident_id": str(incident_id)},
        )

    async def notify_issue_resolved(
        self,
        db: AsyncSession,
        user_id: UUID,
        incident_id: UUID,
        title: str,
    ) -> Optional[Notification]:
        return await self.notify(
            db,
            user_id=user_id,
            type=NotificationType.ISSUE_RESOLVED,
            message=f'Your reported issue "{title}" has been resolved.',
            metadata={"incident_id": str(incident_id)},
        )

    async def notify_escalation(
        self,
        db: AsyncSession,
        admin_id: UUID,
        incident_id: UUID,
        title: str,
        sla_minutes: int,
        age_minutes: int,
    ) -> Optional[Notification]:
        return await self.notify(
            db,
            user_id=admin_id,
            type=NotificationType.ESCALATION,
            message=(
                f'SLA Breach: Incident "{title}" has exceeded the '
                f"{sla_minutes}-minute SLA"
            ),
            metadata={"incident_id": str(incident_id), "age_minutes": age_minutes},
        )


def _incident_id(metadata: dict) -> Optional[UUID]:
    value = metadata.get("incident_id")
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


# Global instance
notification_service = NotificationService()
