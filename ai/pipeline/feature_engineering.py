"""
ClinicFlow - Feature Engineering Pipeline
Converts an appointment row + patient history → no-show feature record
"""

from __future__ import annotations
import logging
from datetime import date, datetime
from typing import Optional

from ai.models.base import parse_datetime
from ai.models.no_show import NoShowPredictionInput, WeatherData

logger = logging.getLogger(__name__)

NO_SHOW_STATUSES = {"no_show", "no-show"}


def weekday_sunday_first(dt: datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (dt.weekday() + 1) % 7


def age_on(dob: date, on: date) -> int:
    return on.year - dob.year - ((on.month, on.day) < (dob.month, dob.day))


class AppointmentFeatureBuilder:
    """
    Builds a NoShowPredictionInput from a raw `appointments` row.
    History lookups that fail degrade to zero-history features.
    """

    def __init__(self, supabase_client):
        self._db = supabase_client

    def _get_prior_appointments(self, patient_id: str, appointment_id: str, before: datetime) -> list[dict]:
        """Patient's appointments strictly before `before`, newest first."""
        try:
            rows = self._db.table("appointments").select(
                "id, status, appointment_time"
            ).eq("patient_id", patient_id).neq("id", appointment_id).lt(
                "appointment_time", before.isoformat()
            ).order("appointment_time", desc=True).execute().data
            return rows or []
        except Exception as e:
            logger.warning(f"[Features] Could not fetch appointment history for patient {patient_id}: {e}")
            return []

    def _patient_age(self, patient: Optional[dict], on: date) -> Optional[int]:
        if not patient or not patient.get("date_of_birth"):
            return None
        try:
            dob = parse_datetime(patient["date_of_birth"]).date()
        except ValueError:
            logger.warning(f"[Features] Unparseable date_of_birth for patient {patient.get('id')}")
            return None
        return age_on(dob, on)

    def build(self, appointment: dict, weather: Optional[dict] = None) -> NoShowPredictionInput:
        appointment_time = parse_datetime(appointment["appointment_time"])
        patient = appointment.get("patients") or {}
        prior = self._get_prior_appointments(appointment["patient_id"], appointment["id"], appointment_time)

        previous_no_shows = sum(
            1 for a in prior if str(a.get("status", "")).lower() in NO_SHOW_STATUSES
        )
        days_since_last = 0
        if prior:
            last = parse_datetime(prior[0]["appointment_time"])
            days_since_last = max(0, (appointment_time - last).days)

        return NoShowPredictionInput(
            appointment_id=appointment["id"],
            patient_id=appointment["patient_id"],
            previous_no_shows=previous_no_shows,
            appointment_hour=appointment_time.hour,
            appointment_day_of_week=weekday_sunday_first(appointment_time),
            days_since_last_appointment=days_since_last,
            weather_conditions=WeatherData.from_dict(weather),
            appointment_time=appointment_time,
            appointment_type=appointment.get("appointment_type") or "routine",
            provider_id=appointment.get("provider_id"),
            patient_age=self._patient_age(patient, appointment_time.date()),
            patient_gender=patient.get("gender"),
            previous_appointments=len(prior),
            insurance_type=patient.get("insurance_type"),
            reminders_sent=appointment.get("reminders_sent") or 0,
        )
