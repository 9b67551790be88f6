"""
ClinicFlow - AI Service
Cache-aside façade over the prediction heuristics, with prediction logging and a model registry lookup
"""

from __future__ import annotations
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ai.models.authorization import (
    AuthorizationRecommendation,
    AuthorizationRecommendationInput,
    AuthorizationRecommender,
    RuleBasedAuthorizationRecommender,
)
from ai.models.base import MODEL_TYPE_TO_PREDICTION_TYPE, InvalidPredictionInput, to_jsonable
from ai.models.no_show import NoShowPrediction, NoShowPredictionInput, NoShowScorer, RuleBasedNoShowScorer
from ai.models.scheduling import (
    GreedyScheduleOptimizer,
    ScheduleOptimizer,
    SchedulingOptimization,
    SchedulingOptimizationInput,
)
from ai.pipeline.ocr_pipeline import OCRPipeline, OCRProcessingInput, OCRResult, get_ocr_pipeline
from app.services.prediction_cache import PredictionCache, WriteResult, input_hash_of

logger = logging.getLogger(__name__)


class PredictionError(RuntimeError):
    """A prediction could not be computed. Callers show a generic failure."""


class AIService:
    """
    Every typed operation follows the same path:
    cache lookup → (miss) registry lookup → compute → one cache write + one log append.
    A cache hit performs no writes.
    """

    def __init__(
        self,
        supabase_client,
        cache: PredictionCache,
        no_show_scorer: Optional[NoShowScorer] = None,
        auth_recommender: Optional[AuthorizationRecommender] = None,
        schedule_optimizer: Optional[ScheduleOptimizer] = None,
        ocr_pipeline: Optional[OCRPipeline] = None,
        cache_ttl_hours: int = 24,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._db = supabase_client
        self.cache = cache
        self.no_show_scorer = no_show_scorer or RuleBasedNoShowScorer()
        self.auth_recommender = auth_recommender or RuleBasedAuthorizationRecommender()
        self.schedule_optimizer = schedule_optimizer or GreedyScheduleOptimizer()
        self.ocr_pipeline = ocr_pipeline or get_ocr_pipeline()
        self.cache_ttl_hours = cache_ttl_hours
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ── registry / log ────────────────────

    def get_active_model(self, model_type: str) -> Optional[dict]:
        """Newest active, deployed model of this type, or None."""
        try:
            rows = self._db.table("ml_models").select(
                "id, name, version, type, model_data, deployment_config"
            ).eq("type", model_type).eq("is_active", True).eq("is_deployed", True).order(
                "created_at", desc=True
            ).limit(1).execute().data
        except Exception as e:
            logger.error(f"[AI Service] Model registry lookup failed for {model_type}: {e}")
            return None

        if not rows:
            logger.warning(f"[AI Service] No active model found for type: {model_type}")
            return None
        return rows[0]

    def log_prediction_result(
        self,
        model_id: Optional[str],
        prediction_type: str,
        input_data: Any,
        prediction: Any,
        confidence: Optional[float] = None,
        appointment_id: Optional[str] = None,
        patient_id: Optional[str] = None,
    ) -> WriteResult:
        try:
            self._db.table("prediction_results").insert({
                "model_id": model_id,
                "prediction_type": prediction_type,
                "input_data": to_jsonable(input_data),
                "prediction": to_jsonable(prediction),
                "confidence": confidence,
                "appointment_id": appointment_id,
                "patient_id": patient_id,
            }).execute()
            return WriteResult(ok=True)
        except Exception as e:
            logger.error(f"[AI Service] Failed to log {prediction_type} prediction: {e}")
            return WriteResult(ok=False, error=str(e))

    # ── cache-aside core ──────────────────

    def get_or_compute(
        self,
        cache_key: str,
        compute_fn: Callable[[], Any],
        *,
        model_type: str,
        input_payload: Any,
        confidence_of: Callable[[Any], float],
        appointment_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        ttl_hours: Optional[int] = None,
    ) -> dict:
        input_hash = input_hash_of(input_payload)
        cached = self.cache.get(cache_key, input_hash=input_hash)
        if cached is not None:
            logger.debug(f"[AI Service] Cache hit for {cache_key}")
            return cached

        model = self.get_active_model(model_type)
        model_id = model["id"] if model else None

        try:
            output = compute_fn()
        except InvalidPredictionInput:
            raise
        except Exception as e:
            logger.error(f"[AI Service] {model_type} computation failed for {cache_key}: {e}", exc_info=True)
            raise PredictionError(f"Failed to compute {MODEL_TYPE_TO_PREDICTION_TYPE[model_type]}") from e

        payload = output.to_dict()
        confidence = confidence_of(output)

        self.cache.put(
            cache_key,
            model_id,
            payload,
            confidence=confidence,
            ttl_hours=ttl_hours or self.cache_ttl_hours,
            input_hash=input_hash,
        )
        self.log_prediction_result(
            model_id,
            MODEL_TYPE_TO_PREDICTION_TYPE[model_type],
            input_payload,
            payload,
            confidence=confidence,
            appointment_id=appointment_id,
            patient_id=patient_id,
        )
        return payload

    # ── typed operations ──────────────────

    def predict_no_show_risk(self, features: NoShowPredictionInput) -> NoShowPrediction:
        payload = self.get_or_compute(
            f"no_show_{features.appointment_id}",
            lambda: self.no_show_scorer.predict(features),
            model_type="no_show_prediction",
            input_payload=features.to_dict(),
            confidence_of=lambda p: p.risk_score,
            appointment_id=features.appointment_id,
            patient_id=features.patient_id,
        )
        return NoShowPrediction.from_dict(payload)

    def recommend_authorization(self, request: AuthorizationRecommendationInput) -> AuthorizationRecommendation:
        payload = self.get_or_compute(
            f"auth_{request.patient_id}_{request.procedure_code}",
            lambda: self.auth_recommender.recommend(request),
            model_type="authorization_recommendation",
            input_payload=request.to_dict(),
            confidence_of=lambda r: r.approval_probability,
            patient_id=request.patient_id,
        )
        return AuthorizationRecommendation.from_dict(payload)

    def optimize_schedule(self, request: SchedulingOptimizationInput) -> SchedulingOptimization:
        payload = self.get_or_compute(
            f"schedule_{request.provider_id}_{request.start.isoformat()}",
            lambda: self.schedule_optimizer.optimize(request),
            model_type="scheduling_optimization",
            input_payload=request.to_dict(),
            confidence_of=lambda s: s.utilization_rate,
        )
        return SchedulingOptimization.from_dict(payload)

    def process_document(self, request: OCRProcessingInput) -> OCRResult:
        payload = self.get_or_compute(
            f"ocr_{request.document_id}",
            lambda: self.ocr_pipeline.process(request, today=self._clock().date()),
            model_type="ocr_extraction",
            input_payload=request.to_dict(),
            confidence_of=lambda r: r.confidence,
        )
        return OCRResult.from_dict(payload)

    # ── batch ─────────────────────────────

    _BATCH_HANDLERS = {
        "no_show_prediction": (NoShowPredictionInput, "predict_no_show_risk"),
        "authorization_recommendation": (AuthorizationRecommendationInput, "recommend_authorization"),
        "scheduling_optimization": (SchedulingOptimizationInput, "optimize_schedule"),
        "ocr_extraction": (OCRProcessingInput, "process_document"),
    }

    def batch_predict(self, model_type: str, inputs: list[dict]) -> dict:
        """Run one model type over many raw inputs; per-input failures are reported, not raised."""
        if model_type not in self._BATCH_HANDLERS:
            raise InvalidPredictionInput(f"Unsupported model type: {model_type}")
        input_cls, method_name = self._BATCH_HANDLERS[model_type]
        operation = getattr(self, method_name)
        prediction_type = MODEL_TYPE_TO_PREDICTION_TYPE[model_type]

        started = time.perf_counter()
        batch_stamp = int(self._clock().timestamp() * 1000)
        results, errors = [], []

        for i, raw in enumerate(inputs):
            try:
                if not isinstance(raw, dict):
                    raise InvalidPredictionInput(f"Batch input {i} must be an object")
                output = operation(input_cls.from_dict(raw))
            except (ValueError, PredictionError, KeyError, TypeError, AttributeError) as e:
                errors.append({"input_index": i, "error": str(e), "input_data": raw})
                continue
            results.append({
                "id": f"batch_{batch_stamp}_{i}",
                "prediction_type": prediction_type,
                "input_data": raw,
                "prediction": output.to_dict(),
                "confidence": output.confidence,
            })

        processing_ms = int((time.perf_counter() - started) * 1000)
        average_confidence = (
            round(sum(r["confidence"] for r in results) / len(results), 4) if results else 0.0
        )
        logger.info(
            f"[AI Service] Batch {model_type}: {len(results)} ok, {len(errors)} failed in {processing_ms}ms"
        )
        return {
            "results": results,
            "errors": errors,
            "summary": {
                "total_requests": len(inputs),
                "successful_predictions": len(results),
                "failed_predictions": len(errors),
                "average_confidence": average_confidence,
                "processing_time": processing_ms,
            },
        }

    def cleanup_expired_cache(self) -> int:
        return self.cache.cleanup_expired()
