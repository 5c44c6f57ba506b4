import asyncio
import os
from datetime import date
from uuid import UUID

from celery import Celery
from celery.schedules import crontab
from celery.utils.log import get_task_logger

from .database import SessionLocal
from . import errors, models
from .services import dispatcher, lifecycle, scoring

logger = get_task_logger(__name__)

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
celery_app = Celery("tasks", broker=CELERY_BROKER_URL)
celery_app.conf.task_always_eager = (
    CELERY_BROKER_URL == "memory://" or os.getenv("TESTING") == "1"
)

celery_app.conf.beat_schedule = {
    "document-expiry-sweep": {
        "task": "shopwatch.tasks.expire_documents_sweep",
        "schedule": crontab(hour=0, minute=15),
    },
    "document-expiry-warnings": {
        "task": "shopwatch.tasks.warn_expiring_documents",
        "schedule": crontab(hour=7, minute=0),
    },
    "retry-failed-deliveries": {
        "task": "shopwatch.tasks.retry_failed_deliveries",
        "schedule": crontab(minute="*/10"),
    },
}


def _deliver(events) -> None:
    if events:
        asyncio.run(dispatcher.deliver_lifecycle_events(events))


@celery_app.task(name="shopwatch.tasks.expire_documents_sweep")
def expire_documents_sweep(today: str | None = None) -> int:
    db = SessionLocal()
    try:
        events = lifecycle.expire_documents(db, date.fromisoformat(today) if today else None)
    finally:
        db.close()
    _deliver(events)
    logger.info("expiry sweep produced %d events", len(events))
    return len(events)


@celery_app.task(name="shopwatch.tasks.warn_expiring_documents")
def warn_expiring_documents(today: str | None = None, lead_days: int | None = None) -> int:
    db = SessionLocal()
    try:
        events = lifecycle.warn_expiring_documents(
            db,
            date.fromisoformat(today) if today else None,
            lead_days if lead_days is not None else lifecycle.EXPIRY_WARNING_DAYS,
        )
    finally:
        db.close()
    _deliver(events)
    logger.info("sent %d expiry warnings", len(events))
    return len(events)


@celery_app.task(name="shopwatch.tasks.retry_failed_deliveries")
def retry_failed_deliveries(limit: int = 100) -> int:
    db = SessionLocal()
    try:
        results = asyncio.run(dispatcher.retry_failed(db, limit=limit))
    finally:
        db.close()
    failed = sum(1 for result in results for outcome in result.channels.values() if not outcome.sent)
    if failed:
        logger.warning("%d channel deliveries still failing after retry", failed)
    return len(results)


@celery_app.task(
    name="shopwatch.tasks.recompute_compliance",
    autoretry_for=(errors.TransientError, errors.ConflictError),
    retry_backoff=True,
    max_retries=3,
)
def recompute_compliance(shop_id: str) -> dict:
    db = SessionLocal()
    try:
        shop = db.get(models.Shop, UUID(shop_id))
        if shop is None:
            logger.warning("recompute requested for unknown shop %s", shop_id)
            return {}
        outcome = scoring.recompute(db, shop.id)
        events = lifecycle.compliance_events(shop, outcome, None)
    finally:
        db.close()
    _deliver(events)
    return {"score": outcome.result.score, "status": outcome.result.status}


def enqueue_recompute(shop_id) -> None:
    if celery_app.conf.task_always_eager:
        recompute_compliance(str(shop_id))
    else:
        recompute_compliance.delay(str(shop_id))
