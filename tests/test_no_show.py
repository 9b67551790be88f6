import pytest

from ai.models.base import InvalidPredictionInput, classify_risk, percent
from ai.models.no_show import (
    NoShowPrediction,
    NoShowPredictionInput,
    RuleBasedNoShowScorer,
    WeatherData,
    predict_no_show_risk,
    top_factors,
)


def features(**overrides):
    base = dict(
        appointment_id="apt-1",
        patient_id="pat-1",
        previous_no_shows=0,
        appointment_hour=10,
        appointment_day_of_week=3,
        days_since_last_appointment=30,
    )
    base.update(overrides)
    return NoShowPredictionInput(**base)


class TestRiskScoring:
    def test_high_risk_scenario(self):
        prediction = predict_no_show_risk(features(
            previous_no_shows=2,
            appointment_hour=8,
            appointment_day_of_week=5,
            days_since_last_appointment=200,
        ))

        assert prediction.risk_score == pytest.approx(0.85)
        assert prediction.risk_level == "high"
        assert prediction.result == "high"
        assert prediction.probability == prediction.risk_score
        names = [f.factor for f in prediction.factors]
        assert names == ["Previous No-Shows", "Appointment Time", "Day of Week", "Time Since Last Visit"]
        assert [i.type for i in prediction.interventions] == ["reminder", "confirmation"]
        assert prediction.interventions[1].priority == 2
        assert prediction.interventions[1].estimated_impact == 0.25

    def test_baseline_has_no_factors(self):
        prediction = predict_no_show_risk(features())
        assert prediction.risk_score == pytest.approx(0.3)
        assert prediction.risk_level == "medium"
        assert prediction.factors == ()
        assert prediction.interventions == ()

    def test_factor_descriptions_echo_values(self):
        prediction = predict_no_show_risk(features(
            previous_no_shows=1,
            appointment_hour=17,
            weather_conditions=WeatherData(precipitation=0.8, conditions="rain"),
        ))
        by_name = {f.factor: f for f in prediction.factors}
        assert by_name["Previous No-Shows"].description == "Patient has 1 previous no-shows"
        assert by_name["Appointment Time"].description == "Appointment scheduled at 17:00"
        assert by_name["Weather"].impact == pytest.approx(0.05)

    @pytest.mark.parametrize("no_shows", [0, 1, 3, 10, 100])
    def test_score_never_exceeds_ceiling(self, no_shows):
        prediction = predict_no_show_risk(features(
            previous_no_shows=no_shows,
            appointment_hour=7,
            appointment_day_of_week=1,
            days_since_last_appointment=365,
            weather_conditions=WeatherData(precipitation=1.0),
        ))
        assert 0.0 <= prediction.risk_score <= 0.95

    def test_previous_no_show_contribution_is_capped(self):
        prediction = predict_no_show_risk(features(previous_no_shows=100))
        assert prediction.factors[0].impact == pytest.approx(0.4)

    def test_recommendations_mention_level_and_percent(self):
        prediction = predict_no_show_risk(features(previous_no_shows=2, appointment_hour=8))
        assert prediction.recommendations[0] == "Risk level: HIGH"
        assert prediction.recommendations[1] == f"Estimated no-show probability: {percent(prediction.risk_score)}%"

    def test_scorer_interface(self):
        scorer = RuleBasedNoShowScorer()
        assert scorer.model_version == "no-show-rules-v1"
        assert scorer.predict(features()) == predict_no_show_risk(features())


class TestClassification:
    @pytest.mark.parametrize("score,level", [
        (0.0, "low"),
        (0.2999, "low"),
        (0.3, "medium"),
        (0.5999, "medium"),
        (0.6, "high"),
        (0.95, "high"),
    ])
    def test_boundaries(self, score, level):
        assert classify_risk(score) == level


class TestInputValidation:
    @pytest.mark.parametrize("field,value", [
        ("previous_no_shows", -1),
        ("appointment_hour", 24),
        ("appointment_hour", -1),
        ("appointment_day_of_week", 7),
        ("days_since_last_appointment", -5),
    ])
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(InvalidPredictionInput):
            features(**{field: value})

    @pytest.mark.parametrize("field,value", [
        ("appointment_day_of_week", 1.5),
        ("appointment_hour", 8.0),
        ("previous_no_shows", 0.5),
        ("days_since_last_appointment", 200.25),
        ("previous_appointments", 3.5),
        ("reminders_sent", 1.0),
    ])
    def test_fractional_counts_rejected(self, field, value):
        with pytest.raises(InvalidPredictionInput, match=f"{field} must be a whole number"):
            features(**{field: value})

    def test_fractional_weekday_is_an_input_error_from_dict(self):
        with pytest.raises(InvalidPredictionInput):
            NoShowPredictionInput.from_dict({
                "appointment_id": "apt-1",
                "patient_id": "pat-1",
                "previous_no_shows": 0,
                "appointment_hour": 10,
                "appointment_day_of_week": 1.5,
                "days_since_last_appointment": 0,
            })

    def test_missing_feature_rejected(self):
        with pytest.raises(InvalidPredictionInput, match="appointment_hour is required"):
            NoShowPredictionInput.from_dict({
                "appointment_id": "apt-1",
                "patient_id": "pat-1",
                "previous_no_shows": 0,
                "appointment_day_of_week": 1,
                "days_since_last_appointment": 0,
            })


class TestTopFactors:
    def setup_method(self):
        self.prediction = predict_no_show_risk(features(
            previous_no_shows=1,
            appointment_hour=8,
            appointment_day_of_week=1,
            days_since_last_appointment=400,
        ))

    def test_declared_order_is_default(self):
        names = [f.factor for f in top_factors(self.prediction)]
        assert names == ["Previous No-Shows", "Appointment Time", "Day of Week"]

    def test_impact_order(self):
        names = [f.factor for f in top_factors(self.prediction, order="impact")]
        assert names == ["Previous No-Shows", "Appointment Time", "Time Since Last Visit"]

    def test_unknown_order(self):
        with pytest.raises(ValueError):
            top_factors(self.prediction, order="random")


class TestSerialization:
    def test_dict_form_reproduces_prediction(self):
        prediction = predict_no_show_risk(features(previous_no_shows=2, appointment_hour=8))
        assert NoShowPrediction.from_dict(prediction.to_dict()) == prediction
