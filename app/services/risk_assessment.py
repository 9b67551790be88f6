"""
ClinicFlow - Real-Time Risk Assessment
Scores appointments on demand, persists assessments and raises high-risk alerts
"""

from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ai.models.base import parse_datetime, percent, to_jsonable
from ai.models.no_show import NoShowPrediction, top_factors
from ai.pipeline.feature_engineering import AppointmentFeatureBuilder
from app.services.notification_service import HIGH_RISK_ALERT, Notification

logger = logging.getLogger(__name__)

APPOINTMENT_SELECT = (
    "*, patients(id, first_name, last_name, phone, email, date_of_birth, gender, insurance_type)"
)


def patient_name(appointment: dict) -> str:
    patient = appointment.get("patients") or {}
    return f"{patient.get('first_name', '')} {patient.get('last_name', '')}".strip() or "Patient"


def build_alert_message(appointment: dict, prediction: NoShowPrediction) -> str:
    appointment_time = parse_datetime(appointment["appointment_time"]).strftime("%Y-%m-%d %H:%M")
    factors = ", ".join(f.factor for f in top_factors(prediction, 3))
    recommendations = "\n".join(f"• {r}" for r in prediction.recommendations)
    return (
        "High No-Show Risk Alert\n\n"
        f"Patient: {patient_name(appointment)}\n"
        f"Appointment: {appointment_time}\n"
        f"Risk Score: {percent(prediction.risk_score)}%\n"
        f"Risk Level: {prediction.risk_level.upper()}\n\n"
        f"Top Risk Factors: {factors}\n\n"
        f"Recommendations:\n{recommendations}\n\n"
        "Please take proactive measures to confirm this appointment."
    )


class RiskAssessmentService:
    def __init__(
        self,
        supabase_client,
        ai_service,
        notifications,
        feature_builder: Optional[AppointmentFeatureBuilder] = None,
        alert_threshold: float = 0.7,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._db = supabase_client
        self.ai_service = ai_service
        self.notifications = notifications
        self.feature_builder = feature_builder or AppointmentFeatureBuilder(supabase_client)
        self.alert_threshold = alert_threshold
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _load_appointment(self, appointment_id: str) -> Optional[dict]:
        rows = self._db.table("appointments").select(APPOINTMENT_SELECT).eq(
            "id", appointment_id
        ).limit(1).execute().data
        return rows[0] if rows else None

    def calculate_real_time_risk(self, appointment_id: str, weather: Optional[dict] = None) -> Optional[NoShowPrediction]:
        """
        Score one appointment and persist the assessment.
        High-risk results also raise a risk_alerts row and notify the provider.
        Returns None when the appointment does not exist.
        """
        appointment = self._load_appointment(appointment_id)
        if not appointment:
            logger.warning(f"[RiskAssessment] Appointment {appointment_id} not found")
            return None

        features = self.feature_builder.build(appointment, weather)
        prediction = self.ai_service.predict_no_show_risk(features)

        self._store_assessment(appointment, prediction)
        if prediction.risk_level == "high" or prediction.risk_score >= self.alert_threshold:
            self._raise_alert(appointment, prediction)

        logger.info(
            f"[RiskAssessment] Appointment {appointment_id}: "
            f"score={prediction.risk_score}, level={prediction.risk_level}"
        )
        return prediction

    def _store_assessment(self, appointment: dict, prediction: NoShowPrediction):
        try:
            self._db.table("risk_assessments").upsert({
                "appointment_id": appointment["id"],
                "provider_id": appointment.get("provider_id"),
                "risk_score": prediction.risk_score,
                "risk_level": prediction.risk_level,
                "risk_factors": to_jsonable(prediction.factors),
                "recommendations": list(prediction.recommendations),
                "explanation": prediction.explanation,
                "assessed_at": self._clock().isoformat(),
                "model_version": self.ai_service.no_show_scorer.model_version,
            }, on_conflict="appointment_id").execute()
        except Exception as e:
            logger.error(f"[RiskAssessment] Failed to store assessment for {appointment['id']}: {e}")

    def _raise_alert(self, appointment: dict, prediction: NoShowPrediction):
        try:
            self._db.table("risk_alerts").insert({
                "appointment_id": appointment["id"],
                "alert_type": "high_no_show_risk",
                "risk_score": prediction.risk_score,
                "risk_level": prediction.risk_level,
                "risk_factors": to_jsonable(prediction.factors),
                "recommendations": list(prediction.recommendations),
                "alert_status": "active",
                "created_at": self._clock().isoformat(),
            }).execute()
        except Exception as e:
            logger.error(f"[RiskAssessment] Failed to store alert for {appointment['id']}: {e}")

        provider_id = appointment.get("provider_id")
        if not provider_id:
            return
        try:
            self.notifications.send_notification(Notification(
                user_id=provider_id,
                type=HIGH_RISK_ALERT,
                title="High No-Show Risk Alert",
                message=f"{patient_name(appointment)} has {percent(prediction.risk_score)}% no-show risk",
                data={
                    "appointment_id": appointment["id"],
                    "risk_score": prediction.risk_score,
                    "risk_level": prediction.risk_level,
                    "recommendations": list(prediction.recommendations),
                    "details": build_alert_message(appointment, prediction),
                },
            ))
        except Exception as e:
            logger.error(f"[RiskAssessment] Failed to notify provider {provider_id}: {e}")

    def get_active_risk_alerts(self, start: datetime, end: datetime, provider_id: Optional[str] = None) -> list[dict]:
        try:
            query = self._db.table("risk_alerts").select(
                "*, appointments(id, appointment_time, status, provider_id, "
                "patients(first_name, last_name, phone, email))"
            ).eq("alert_status", "active").gte("created_at", start.isoformat()).lte(
                "created_at", end.isoformat()
            )
            if provider_id:
                query = query.eq("appointments.provider_id", provider_id)
            return query.order("risk_score", desc=True).execute().data or []
        except Exception as e:
            logger.error(f"[RiskAssessment] Failed to fetch active alerts: {e}")
            return []

    def acknowledge_risk_alert(self, alert_id: str, user_id: str, action: Optional[str] = None) -> bool:
        try:
            self._db.table("risk_alerts").update({
                "alert_status": "acknowledged",
                "acknowledged_by": user_id,
                "acknowledged_at": self._clock().isoformat(),
                "action_taken": action,
            }).eq("id", alert_id).execute()
            return True
        except Exception as e:
            logger.error(f"[RiskAssessment] Failed to acknowledge alert {alert_id}: {e}")
            return False
