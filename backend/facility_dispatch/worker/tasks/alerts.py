"""
Celery task for predicted-failure alert batches.

The forecasting job posts its batch here instead of holding an HTTP
request open while every alert is gated and assigned.
"""
import asyncio

from celery import Task
from celery.utils.log import get_task_logger

from facility_dispatch.worker.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=10,
    name="facility_dispatch.worker.tasks.alerts.process_alert_batch",
    acks_late=True,
)
def process_alert_batch(self: Task, alerts: list[dict]) -> dict:
    """
    Gate and assign a batch of alerts.

    Failures of single alerts are recorded in the result. Anything that
    breaks the batch as a whole retries it; alerts already assigned are
    suppressed on retry by the cooldown window.
    """
    try:
        return asyncio.run(_process(alerts))
    except Exception as exc:
        logger.error(f"Alert batch failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)


async def _process(alerts: list[dict]) -> dict:
    from facility_dispatch.database import close_db, get_db_context
    from facility_dispatch.services.assignment_engine import AssignmentEngine
    from facility_dispatch.services.notification_service import NotificationService

    sink = NotificationService()
    engine = AssignmentEngine(sink=sink)
    try:
        async with get_db_context() as db:
            batch = await engine.process_alerts(db, alerts)
    finally:
        await sink.close()
        await close_db()

    logger.info(f"Alert batch complete: {batch.assigned} assigned, {batch.failed} not")
    return batch.to_dict()
