from datetime import date, datetime

from ai.pipeline.feature_engineering import AppointmentFeatureBuilder, age_on, weekday_sunday_first
from tests.fakes import FakeSupabase

APPOINTMENT = {
    "id": "apt-3",
    "patient_id": "pat-1",
    "provider_id": "prov-1",
    "appointment_time": "2024-06-14T08:30:00+00:00",
    "appointment_type": "follow_up",
    "reminders_sent": 1,
    "patients": {"id": "pat-1", "date_of_birth": "1980-06-20", "gender": "F", "insurance_type": "medicaid"},
}

HISTORY = [
    {"id": "apt-1", "patient_id": "pat-1", "status": "no_show", "appointment_time": "2023-09-01T09:00:00+00:00"},
    {"id": "apt-2", "patient_id": "pat-1", "status": "No-Show", "appointment_time": "2023-11-20T09:00:00+00:00"},
    {"id": "apt-0", "patient_id": "pat-1", "status": "completed", "appointment_time": "2023-01-05T09:00:00+00:00"},
    {"id": "apt-9", "patient_id": "pat-2", "status": "no_show", "appointment_time": "2024-01-05T09:00:00+00:00"},
    {"id": "apt-4", "patient_id": "pat-1", "status": "scheduled", "appointment_time": "2024-07-01T09:00:00+00:00"},
]


class TestHelpers:
    def test_weekday_sunday_first(self):
        assert weekday_sunday_first(datetime(2024, 6, 16)) == 0  # Sunday
        assert weekday_sunday_first(datetime(2024, 6, 14)) == 5  # Friday
        assert weekday_sunday_first(datetime(2024, 6, 15)) == 6  # Saturday

    def test_age_on_before_birthday(self):
        assert age_on(date(1980, 6, 20), date(2024, 6, 14)) == 43
        assert age_on(date(1980, 6, 20), date(2024, 6, 20)) == 44


class TestAppointmentFeatureBuilder:
    def test_build_from_history(self):
        db = FakeSupabase({"appointments": HISTORY})
        features = AppointmentFeatureBuilder(db).build(APPOINTMENT)

        assert features.appointment_id == "apt-3"
        assert features.previous_no_shows == 2
        assert features.previous_appointments == 3
        assert features.days_since_last_appointment == 206
        assert features.appointment_hour == 8
        assert features.appointment_day_of_week == 5
        assert features.patient_age == 43
        assert features.patient_gender == "F"
        assert features.insurance_type == "medicaid"
        assert features.appointment_type == "follow_up"
        assert features.reminders_sent == 1

    def test_first_visit(self):
        features = AppointmentFeatureBuilder(FakeSupabase()).build(APPOINTMENT)
        assert features.previous_no_shows == 0
        assert features.previous_appointments == 0
        assert features.days_since_last_appointment == 0

    def test_history_lookup_failure_degrades(self):
        db = FakeSupabase({"appointments": HISTORY})
        db.fail_on("appointments", "select")
        features = AppointmentFeatureBuilder(db).build(APPOINTMENT)
        assert features.previous_no_shows == 0
        assert features.days_since_last_appointment == 0

    def test_weather_passed_through(self):
        features = AppointmentFeatureBuilder(FakeSupabase()).build(
            APPOINTMENT, weather={"precipitation": 0.7, "conditions": "rain"}
        )
        assert features.weather_conditions.precipitation == 0.7

    def test_missing_birth_date(self):
        appointment = {**APPOINTMENT, "patients": {}}
        features = AppointmentFeatureBuilder(FakeSupabase()).build(appointment)
        assert features.patient_age is None
