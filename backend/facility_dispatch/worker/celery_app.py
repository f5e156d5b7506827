"""
Celery application configuration for Facility Dispatch.

Beat fires the escalation sweep on a fixed interval; the sweep itself is
one-shot and single-flight (see services.sweep_lock), so even with N
workers only one sweep does the work at a time.

Scheduler: redbeat.RedBeatScheduler stores schedule state in Redis, so Beat
survives container restarts without firing all tasks immediately.
"""
from celery import Celery

from facility_dispatch.config import settings

celery_app = Celery(
    "facility_dispatch",
    broker=str(settings.redis_url),
    backend=str(settings.redis_url),
    include=[
        "facility_dispatch.worker.tasks.escalation",
        "facility_dispatch.worker.tasks.alerts",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Re-queue task if worker dies mid-execution (at-least-once delivery)
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    # Hard kill at 120s; soft signal at 90s so tasks can clean up
    task_time_limit=120,
    task_soft_time_limit=90,
    # Alert batches must never delay the SLA sweep
    task_routes={
        "facility_dispatch.worker.tasks.alerts.process_alert_batch": {"queue": "alerts"},
    },
    beat_scheduler="redbeat.RedBeatScheduler",
    redbeat_redis_url=str(settings.redis_url),
    beat_schedule={
        "escalation-sweep": {
            "task": "facility_dispatch.worker.tasks.escalation.run_escalation_sweep",
            "schedule": settings.escalation_sweep_interval_seconds,
        },
        "prune-rate-limit-counters": {
            "task": "facility_dispatch.worker.tasks.escalation.prune_rate_limit_counters",
            "schedule": 24 * 60 * 60.0,
        },
    },
)
