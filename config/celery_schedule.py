"""
ClinicFlow - Celery Beat Schedule
Periodic task configuration
"""

from celery.schedules import crontab

CELERYBEAT_SCHEDULE = {
    # Expired prediction cache rows, hourly
    "hourly-prediction-cache-cleanup": {
        "task": "app.tasks.maintenance_tasks.cleanup_expired_predictions",
        "schedule": crontab(minute=0),
        "options": {"queue": "default"},
    },
    # Deferred notification digests, hourly
    "hourly-notification-digests": {
        "task": "app.tasks.maintenance_tasks.process_queued_notifications",
        "schedule": crontab(minute=5),
        "options": {"queue": "notifications"},
    },
    # In-process prediction memory tier, every 5 minutes
    "prediction-memory-eviction": {
        "task": "app.tasks.maintenance_tasks.clear_prediction_memory_cache",
        "schedule": 300,
        "options": {"queue": "default"},
    },
}
