"""
ClinicFlow - Maintenance Celery Tasks
Scheduled prediction cache cleanup and notification digests
"""

import functools
import logging
import threading

from flask import current_app

from app.extensions import celery_app

logger = logging.getLogger(__name__)


def skip_if_running(fn):
    """A run that finds the previous one still in flight in this process is skipped."""
    lock = threading.Lock()

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        if not lock.acquire(blocking=False):
            logger.info(f"[Maintenance] {fn.__name__} still running, skipping this run")
            return None
        try:
            return fn(*args, **kwargs)
        finally:
            lock.release()

    return wrapper


@celery_app.task(name="app.tasks.maintenance_tasks.cleanup_expired_predictions", queue="default")
@skip_if_running
def cleanup_expired_predictions():
    """Hourly removal of expired ai_predictions_cache rows."""
    logger.info("[Maintenance] Running prediction cache cleanup")
    try:
        deleted = current_app.extensions["prediction_cache"].cleanup_expired()
        logger.info(f"[Maintenance] Prediction cache cleanup complete: {deleted} rows")
        return deleted
    except Exception as e:
        logger.error(f"[Maintenance] Prediction cache cleanup failed: {e}", exc_info=True)
        return 0


@celery_app.task(name="app.tasks.maintenance_tasks.process_queued_notifications", queue="notifications")
@skip_if_running
def process_queued_notifications():
    try:
        return current_app.extensions["notifications"].process_queued_notifications()
    except Exception as e:
        logger.error(f"[Maintenance] Notification digest run failed: {e}", exc_info=True)
        return 0


@celery_app.task(name="app.tasks.maintenance_tasks.clear_prediction_memory_cache", queue="default")
@skip_if_running
def clear_prediction_memory_cache():
    evicted = current_app.extensions["prediction_cache"].evict_expired_memory()
    if evicted:
        logger.info(f"[Maintenance] Evicted {evicted} stale in-memory predictions")
    return evicted
