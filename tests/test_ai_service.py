import pytest

from ai.models.base import InvalidPredictionInput
from ai.models.no_show import NoShowPredictionInput, NoShowScorer
from ai.pipeline.ocr_pipeline import OCRProcessingInput
from app.services.ai_service import AIService, PredictionError
from app.services.prediction_cache import CACHE_TABLE, PredictionCache

MODELS = [
    {"id": "m-old", "type": "no_show_prediction", "is_active": True, "is_deployed": True,
     "created_at": "2024-01-01T00:00:00+00:00"},
    {"id": "m-new", "type": "no_show_prediction", "is_active": True, "is_deployed": True,
     "created_at": "2024-05-01T00:00:00+00:00"},
    {"id": "m-draft", "type": "no_show_prediction", "is_active": True, "is_deployed": False,
     "created_at": "2024-06-01T00:00:00+00:00"},
]

FEATURES = {
    "appointment_id": "apt-1",
    "patient_id": "pat-1",
    "previous_no_shows": 2,
    "appointment_hour": 8,
    "appointment_day_of_week": 5,
    "days_since_last_appointment": 200,
}


class ExplodingScorer(NoShowScorer):
    def predict(self, features):
        raise RuntimeError("model server unreachable")


@pytest.fixture
def service(db, clock):
    db.tables["ml_models"] = [dict(m) for m in MODELS]
    return AIService(db, PredictionCache(db, clock=clock), clock=clock)


class TestModelRegistry:
    def test_newest_deployed_model(self, service):
        assert service.get_active_model("no_show_prediction")["id"] == "m-new"

    def test_no_model(self, service):
        assert service.get_active_model("ocr_extraction") is None

    def test_registry_failure(self, service, db):
        db.fail_on("ml_models", "select")
        assert service.get_active_model("no_show_prediction") is None


class TestGetOrCompute:
    def test_cache_idempotence(self, service, db):
        features = NoShowPredictionInput.from_dict(FEATURES)
        first = service.predict_no_show_risk(features)
        second = service.predict_no_show_risk(features)

        assert first == second
        assert first.risk_score == pytest.approx(0.85)
        assert len(db.ops("prediction_results", "insert")) == 1
        assert len(db.ops(CACHE_TABLE, "upsert")) == 1

    def test_log_row_contents(self, service, db):
        service.predict_no_show_risk(NoShowPredictionInput.from_dict(FEATURES))
        row = db.tables["prediction_results"][0]
        assert row["model_id"] == "m-new"
        assert row["prediction_type"] == "no_show_risk"
        assert row["appointment_id"] == "apt-1"
        assert row["patient_id"] == "pat-1"
        assert row["confidence"] == pytest.approx(0.85)
        assert row["input_data"]["previous_no_shows"] == 2
        assert db.tables[CACHE_TABLE][0]["cache_key"] == "no_show_apt-1"

    def test_persistent_hit_after_restart(self, db, clock, service):
        features = NoShowPredictionInput.from_dict(FEATURES)
        service.predict_no_show_risk(features)

        restarted = AIService(db, PredictionCache(db, clock=clock), clock=clock)
        restarted.predict_no_show_risk(features)
        assert len(db.ops("prediction_results", "insert")) == 1

    def test_changed_input_recomputes(self, service, db):
        service.predict_no_show_risk(NoShowPredictionInput.from_dict(FEATURES))
        changed = NoShowPredictionInput.from_dict({**FEATURES, "previous_no_shows": 0})
        prediction = service.predict_no_show_risk(changed)

        assert prediction.risk_score == pytest.approx(0.55)
        assert len(db.ops("prediction_results", "insert")) == 2

    def test_computes_without_registered_model(self, service, db):
        db.tables["ml_models"] = []
        prediction = service.predict_no_show_risk(NoShowPredictionInput.from_dict(FEATURES))
        assert prediction.risk_level == "high"
        assert db.tables["prediction_results"][0]["model_id"] is None

    def test_log_failure_does_not_fail_prediction(self, service, db):
        db.fail_on("prediction_results", "insert")
        db.fail_on(CACHE_TABLE, "upsert")
        prediction = service.predict_no_show_risk(NoShowPredictionInput.from_dict(FEATURES))
        assert prediction.risk_score == pytest.approx(0.85)

    def test_compute_failure_raises_prediction_error(self, db, clock):
        service = AIService(db, PredictionCache(db, clock=clock), no_show_scorer=ExplodingScorer(), clock=clock)
        with pytest.raises(PredictionError):
            service.predict_no_show_risk(NoShowPredictionInput.from_dict(FEATURES))
        assert db.ops("prediction_results", "insert") == []
        assert db.ops(CACHE_TABLE, "upsert") == []


class TestTypedOperations:
    def test_authorization_cache_key(self, service, db):
        from ai.models.authorization import AuthorizationRecommendationInput

        req = AuthorizationRecommendationInput.from_dict({
            "patient_id": "pat-1",
            "procedure_code": "70553",
            "procedure_details": {"procedure_name": "MRI", "urgency": "routine"},
            "patient_history": {"previous_authorizations": [{"procedure_code": "70553", "status": "approved"}]},
        })
        rec = service.recommend_authorization(req)
        assert rec.recommended_approach == "standard"
        assert db.tables[CACHE_TABLE][0]["cache_key"] == "auth_pat-1_70553"
        assert db.tables["prediction_results"][0]["prediction_type"] == "auth_recommendation"

    def test_ocr_uses_clock_date(self, service, clock):
        result = service.process_document(OCRProcessingInput(document_id="doc-1"))
        assert result.extracted_text.endswith(f"Date: {clock.now.month}/{clock.now.day}/{clock.now.year}")
        assert result.confidence == 0.91

    def test_schedule_cache_key(self, service, db):
        from ai.models.scheduling import SchedulingOptimizationInput

        req = SchedulingOptimizationInput.from_dict({
            "provider_id": "prov-1",
            "date_range": {"start": "2024-06-17T08:00:00", "end": "2024-06-17T17:00:00"},
            "appointment_requests": [{"patient_id": "p1", "appointment_type": "x", "duration": 30}],
        })
        service.optimize_schedule(req)
        assert db.tables[CACHE_TABLE][0]["cache_key"] == "schedule_prov-1_2024-06-17T08:00:00"


class TestBatchPredict:
    def test_mixed_batch(self, service):
        bad = {**FEATURES, "appointment_id": "apt-2", "appointment_hour": 30}
        other = {**FEATURES, "appointment_id": "apt-3", "previous_no_shows": 0}
        outcome = service.batch_predict("no_show_prediction", [FEATURES, bad, other])

        summary = outcome["summary"]
        assert summary["total_requests"] == 3
        assert summary["successful_predictions"] == 2
        assert summary["failed_predictions"] == 1
        assert summary["average_confidence"] == pytest.approx((0.85 + 0.55) / 2)
        assert outcome["errors"][0]["input_index"] == 1
        assert outcome["results"][0]["prediction_type"] == "no_show_risk"
        assert outcome["results"][1]["id"].endswith("_2")

    def test_non_object_items_fail_individually(self, service):
        auth = {"patient_id": "pat-1", "procedure_code": "70553", "procedure_details": "MRI"}
        outcome = service.batch_predict("no_show_prediction", [FEATURES, "not-an-object", None])
        assert outcome["summary"]["successful_predictions"] == 1
        assert [e["input_index"] for e in outcome["errors"]] == [1, 2]
        assert outcome["errors"][0]["input_data"] == "not-an-object"

        nested = service.batch_predict("authorization_recommendation", [auth])
        assert nested["summary"]["failed_predictions"] == 1

    def test_unknown_model_type(self, service):
        with pytest.raises(InvalidPredictionInput):
            service.batch_predict("fortune_telling", [{}])

    def test_empty_batch(self, service):
        outcome = service.batch_predict("ocr_extraction", [])
        assert outcome["summary"]["average_confidence"] == 0.0
        assert outcome["results"] == []
