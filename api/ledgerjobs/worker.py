from celery import Celery
from celery.schedules import crontab

from ledgerjobs.core.config import settings

celery_app = Celery(
    "ledgerjobs",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=24 * 3600,
)

# ─── Queues ───────────────────────────────────
# One queue per task type so each gets its own concurrency limit. Start one
# worker per queue with the matching -c value, e.g.:
#   celery -A ledgerjobs.worker worker -Q exports -c $EXPORT_CONCURRENCY
QUEUE_CONCURRENCY: dict[str, int] = {
    "recurring": settings.recurring_concurrency,
    "exports": settings.export_concurrency,
    "documents": settings.document_concurrency,
}

celery_app.conf.task_routes = {
    "ledgerjobs.services.recurring.*": {"queue": "recurring"},
    "ledgerjobs.services.export.*": {"queue": "exports"},
    "ledgerjobs.services.inbox.*": {"queue": "documents"},
}

# ─── Scheduled tasks ──────────────────────────
celery_app.conf.beat_schedule = {
    "detect-recurring-daily": {
        "task": "ledgerjobs.services.recurring.schedule_recurring_detection",
        "schedule": crontab(hour=5, minute=0),
    },
}

# Explicitly include task modules so the worker registers them on startup.
celery_app.conf.include = [
    "ledgerjobs.services.recurring",
    "ledgerjobs.services.export",
    "ledgerjobs.services.inbox",
]
