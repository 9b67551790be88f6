"""
ClinicFlow - Extensions
Celery app and service wiring shared across the Flask app and workers
"""

import logging

from celery import Celery
from flask import Flask, has_app_context

logger = logging.getLogger(__name__)

celery_app = Celery("clinicflow")


def init_celery(app: Flask):
    redis_url = app.config.get("REDIS_URL", "redis://localhost:6379/0")
    celery_app.conf.update(
        broker_url=redis_url,
        result_backend=redis_url,
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        task_routes={
            "app.tasks.ai_tasks.*": {"queue": "ai_processing"},
            "app.tasks.maintenance_tasks.process_queued_notifications": {"queue": "notifications"},
        },
        task_default_queue="default",
        task_default_exchange="default",
        task_default_routing_key="default",
        worker_prefetch_multiplier=1,
        task_acks_late=True,
        task_always_eager=app.config.get("CELERY_TASK_ALWAYS_EAGER", False),
        task_eager_propagates=app.config.get("CELERY_TASK_ALWAYS_EAGER", False),
    )

    class ContextTask(celery_app.Task):
        def __call__(self, *args, **kwargs):
            if has_app_context():
                return self.run(*args, **kwargs)
            with app.app_context():
                return self.run(*args, **kwargs)

    celery_app.Task = ContextTask
    logger.info("Celery initialized.")


def init_services(app: Flask, supabase_client):
    """Build the service graph once per app and park it on app.extensions."""
    from ai.models.scheduling import GreedyScheduleOptimizer, ScheduleEconomics
    from app.services.ai_service import AIService
    from app.services.exception_handling import ExceptionHandlingService
    from app.services.notification_service import NotificationService, RateLimiter
    from app.services.prediction_cache import PredictionCache
    from app.services.risk_assessment import RiskAssessmentService
    from app.services.services import RiskAnalyticsService

    cfg = app.config
    cache = PredictionCache(supabase_client, memory_ttl_seconds=cfg["PREDICTION_MEMORY_TTL_SECONDS"])
    ai_service = AIService(
        supabase_client,
        cache,
        schedule_optimizer=GreedyScheduleOptimizer(ScheduleEconomics.from_config(cfg)),
        cache_ttl_hours=cfg["PREDICTION_CACHE_TTL_HOURS"],
    )
    notifications = NotificationService(
        supabase_client,
        rate_limiter=RateLimiter(
            high_risk_limit=cfg["NOTIFICATION_HIGH_RISK_HOURLY_LIMIT"],
            default_limit=cfg["NOTIFICATION_DEFAULT_HOURLY_LIMIT"],
        ),
    )

    app.extensions["supabase"] = supabase_client
    app.extensions["prediction_cache"] = cache
    app.extensions["ai_service"] = ai_service
    app.extensions["exception_handler"] = ExceptionHandlingService(supabase_client)
    app.extensions["notifications"] = notifications
    app.extensions["risk_assessment"] = RiskAssessmentService(
        supabase_client,
        ai_service,
        notifications,
        alert_threshold=cfg["RISK_ALERT_THRESHOLD"],
    )
    app.extensions["risk_analytics"] = RiskAnalyticsService(supabase_client)


def init_extensions(app: Flask, supabase_client):
    init_services(app, supabase_client)
    init_celery(app)
