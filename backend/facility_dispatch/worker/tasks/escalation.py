"""
Celery tasks for the SLA escalation sweep.

One-shot: each run does a single sweep and exits. Beat calls it every
escalation_sweep_interval_seconds.
"""
import asyncio
from datetime import timedelta

from celery.utils.log import get_task_logger

from facility_dispatch.worker.celery_app import celery_app

logger = get_task_logger(__name__)

# Counters older than this are dropped by the daily prune
RATE_LIMIT_RETENTION_DAYS = 7


@celery_app.task(name="facility_dispatch.worker.tasks.escalation.run_escalation_sweep")
def run_escalation_sweep() -> dict:
    """
    Escalate SLA breaches and reschedule slots of unavailable technicians.

    asyncio.run() gives each task its own event loop for async SQLAlchemy
    and Redis; both are disposed before the loop closes.
    """
    try:
        return asyncio.run(_escalation_sweep())
    except Exception as e:
        logger.error(f"Escalation sweep task failed: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}


@celery_app.task(name="facility_dispatch.worker.tasks.escalation.prune_rate_limit_counters")
def prune_rate_limit_counters() -> dict:
    try:
        return asyncio.run(_prune_counters())
    except Exception as e:
        logger.error(f"Rate limit prune task failed: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}


async def _escalation_sweep() -> dict:
    from facility_dispatch.database import close_db, get_db_context
    from facility_dispatch.services.escalation_sweep import EscalationSweep
    from facility_dispatch.services.notification_service import NotificationService
    from facility_dispatch.services.sweep_lock import SweepLock

    # Fresh clients: connections cannot be shared across event loops
    lock = SweepLock()
    sink = NotificationService()
    sweep = EscalationSweep(sink=sink, lock=lock)
    try:
        async with get_db_context() as db:
            result = await sweep.run_escalation_sweep(db)
    finally:
        await sink.close()
        await lock.close()
        await close_db()

    logger.info(f"Escalation sweep task complete: {result.to_dict()}")
    return {"status": "ok", **result.to_dict()}


async def _prune_counters() -> dict:
    from facility_dispatch.database import close_db, get_db_context
    from facility_dispatch.models import utcnow
    from facility_dispatch.services.assignment_rate_limiter import assignment_rate_limiter

    cutoff = (utcnow() - timedelta(days=RATE_LIMIT_RETENTION_DAYS)).date()
    try:
        async with get_db_context() as db:
            removed = await assignment_rate_limiter.prune_before(db, cutoff)
    finally:
        await close_db()
    return {"status": "ok", "removed": removed}
