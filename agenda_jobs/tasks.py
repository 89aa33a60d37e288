from __future__ import annotations

from typing import Any

from celery.utils.log import get_task_logger
from sqlalchemy.exc import OperationalError

from agenda.core.config import settings as api_settings
from agenda.core.exceptions import BookingTimeoutError, StorageError
from agenda.db.session import SessionLocal
from agenda.services.booking_manager import BookingReservationManager
from agenda.services.provider_config import build_availability_cache
from agenda.services.recurring import RecurringGenerationScheduler
from agenda.services.scheduling import as_uuid
from agenda_jobs.celery_app import celery_app

logger = get_task_logger(__name__)

_RETRYABLE = (StorageError, BookingTimeoutError, OperationalError)


def build_scheduler() -> RecurringGenerationScheduler:
    return RecurringGenerationScheduler(SessionLocal, build_availability_cache(api_settings))


def build_manager() -> BookingReservationManager:
    return BookingReservationManager(
        SessionLocal,
        build_availability_cache(api_settings),
        lock_timeout_seconds=api_settings.booking_lock_timeout_seconds,
    )


@celery_app.task(name="agenda.generate_all_slots")
def generate_all_slots() -> dict[str, Any]:
    """Extend every provider's slot horizon; one provider failing does not stop the run."""

    reports = build_scheduler().run_daily()
    failed = [str(provider_id) for provider_id, report in reports.items() if not report.ok]
    if failed:
        logger.warning("Slot generation failed for %d provider(s): %s", len(failed), failed)
    return {
        "providers": len(reports),
        "generated": sum(report.generated for report in reports.values()),
        "failed_providers": failed,
    }


@celery_app.task(
    name="agenda.regenerate_provider_slots",
    autoretry_for=_RETRYABLE,
    retry_backoff=True,
    retry_backoff_max=300,
    max_retries=5,
)
def regenerate_provider_slots(provider_id: str) -> dict[str, Any]:
    """Prune and rebuild one provider's future FREE slots."""

    report = build_scheduler().regenerate_provider(as_uuid(provider_id))
    logger.info(
        "Regenerated slots for provider %s: %d generated, %d pruned",
        provider_id,
        report.generated,
        report.pruned,
    )
    return report.as_dict()


@celery_app.task(
    name="agenda.cleanup_stale_slots",
    autoretry_for=_RETRYABLE,
    retry_backoff=True,
    max_retries=3,
)
def cleanup_stale_slots(retention_days: int | None = None) -> dict[str, Any]:
    days = retention_days if retention_days is not None else api_settings.slot_retention_days
    deleted = build_scheduler().cleanup_stale(days)
    return {"retention_days": days, "deleted": deleted}


@celery_app.task(
    name="agenda.reconcile_booking_slots",
    autoretry_for=_RETRYABLE,
    retry_backoff=True,
    retry_backoff_max=120,
    max_retries=5,
)
def reconcile_booking_slots(booking_id: str) -> dict[str, Any]:
    """Re-apply a booking's status to its slot rows after a failed projection."""

    updated = build_manager().reconcile_slots(as_uuid(booking_id))
    return {"booking_id": booking_id, "updated_slots": updated}
