"""
Celery worker for batch operation processing.
"""
from datetime import datetime, timedelta, timezone
from uuid import UUID
import logging

from celery import Celery
from kombu.exceptions import OperationalError

from .config import settings
from .database import SessionLocal
from .models import BatchOperation
from .use_cases.batch_operations import process_batch_operation_use_case, requeue_stalled_operations

logger = logging.getLogger(__name__)

celery_app = Celery(
    "confirmsure",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)

# Pending operations older than this are assumed to have lost their enqueue.
STALE_PENDING_AFTER = timedelta(minutes=5)
# Processing operations older than this are assumed to have lost their worker.
STALE_PROCESSING_AFTER = timedelta(minutes=30)


@celery_app.task(name="process_batch_operation")
def process_batch_operation(operation_id: str):
    """Process one admitted batch operation; items fail independently."""
    db = SessionLocal()
    try:
        operation = process_batch_operation_use_case(db=db, operation_id=UUID(operation_id))
        if operation is None:
            return {"operation_id": operation_id, "status": None}
        return {
            "operation_id": operation_id,
            "status": operation.status,
            "processed_items": operation.processed_items,
            "failed_items": operation.failed_items,
        }
    except Exception:
        db.rollback()
        logger.exception("Error processing batch operation %s", operation_id)
        raise
    finally:
        db.close()


@celery_app.task(name="sweep_pending_batch_operations")
def sweep_pending_batch_operations(batch_size: int = 20):
    """Re-dispatch operations that stayed pending or stalled in processing."""
    db = SessionLocal()
    try:
        now = datetime.now(timezone.utc)
        stalled = requeue_stalled_operations(db=db, started_before=now - STALE_PROCESSING_AFTER, limit=batch_size)
        cutoff = now - STALE_PENDING_AFTER
        rows = (
            db.query(BatchOperation.id)
            .filter(BatchOperation.status == "pending", BatchOperation.created_at <= cutoff)
            .order_by(BatchOperation.created_at.asc())
            .limit(batch_size)
            .all()
        )
        operation_ids = list(dict.fromkeys([*stalled, *(row[0] for row in rows)]))
    finally:
        db.close()

    for operation_id in operation_ids:
        enqueue_batch_operation(operation_id)
    logger.info("Re-dispatched %s pending batch operations", len(operation_ids))
    return {"dispatched": len(operation_ids)}


def enqueue_batch_operation(operation_id: UUID) -> None:
    """Hand an admitted operation to the worker; broker errors leave it pending for the sweep."""
    try:
        process_batch_operation.delay(str(operation_id))
    except OperationalError:
        logger.exception("Failed to enqueue batch operation %s (left pending)", operation_id)


# Schedule periodic processing
celery_app.conf.beat_schedule = {
    'sweep-pending-batch-operations': {
        'task': 'sweep_pending_batch_operations',
        'schedule': 60.0,  # Every minute
    },
}
