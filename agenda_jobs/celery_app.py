from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from agenda_jobs.config import settings

celery_app = Celery(
    "agenda",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["agenda_jobs.tasks"],
)

celery_app.conf.timezone = settings.timezone
celery_app.conf.broker_connection_retry_on_startup = True
celery_app.conf.beat_schedule = {
    # Keeps every provider's horizon filled one day further each night.
    "generate-all-slots-daily": {
        "task": "agenda.generate_all_slots",
        "schedule": crontab(hour=settings.generation_hour, minute=settings.generation_minute),
    },
    "cleanup-stale-slots-weekly": {
        "task": "agenda.cleanup_stale_slots",
        "schedule": crontab(
            day_of_week=settings.cleanup_day_of_week,
            hour=settings.cleanup_hour,
            minute=settings.cleanup_minute,
        ),
    },
}
