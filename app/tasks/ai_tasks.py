"""
ClinicFlow - Celery Async Tasks
Appointment risk assessment and intake exception routing
"""

from __future__ import annotations
import logging

from flask import current_app

from app.extensions import celery_app

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────
# RISK ASSESSMENT
# ─────────────────────────────────────────

@celery_app.task(
    bind=True,
    name="app.tasks.ai_tasks.assess_appointment_risk",
    max_retries=3,
    default_retry_delay=60,
    queue="ai_processing",
)
def assess_appointment_risk(self, appointment_id: str):
    """
    Score an appointment and raise alerts for high risk.
    Fired when an appointment is created or rescheduled.
    """
    logger.info(f"[Risk Pipeline] Assessing appointment {appointment_id}")

    try:
        service = current_app.extensions["risk_assessment"]
        prediction = service.calculate_real_time_risk(appointment_id)
        if prediction is None:
            return None

        logger.info(
            f"[Risk Pipeline] Appointment {appointment_id} assessed: "
            f"score={prediction.risk_score}, level={prediction.risk_level}"
        )
        return {"risk_score": prediction.risk_score, "risk_level": prediction.risk_level}

    except Exception as exc:
        logger.error(f"[Risk Pipeline] Error assessing appointment {appointment_id}: {exc}", exc_info=True)
        raise self.retry(exc=exc)


# ─────────────────────────────────────────
# INTAKE EXCEPTIONS
# ─────────────────────────────────────────

@celery_app.task(
    bind=True,
    name="app.tasks.ai_tasks.route_intake_exception",
    max_retries=2,
    default_retry_delay=30,
    queue="ai_processing",
)
def route_intake_exception(self, task_id: str, exception_type: str, context: dict):
    logger.info(f"[Intake] Routing {exception_type} for task {task_id}")
    try:
        handler = current_app.extensions["exception_handler"]
        resolution = handler.handle_processing_exception(task_id, exception_type, context)
        logger.info(
            f"[Intake] Task {task_id} resolved via {resolution.strategy}: "
            f"success={resolution.success}, status={resolution.new_status}"
        )
        return resolution.to_dict()
    except Exception as exc:
        logger.error(f"[Intake] Failed to route {exception_type} for task {task_id}: {exc}", exc_info=True)
        raise self.retry(exc=exc)
