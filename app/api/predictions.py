"""
ClinicFlow - Predictions API Blueprint
No-show risk, authorization, scheduling, document extraction and batch predictions
"""

from __future__ import annotations

from flask import Blueprint, request, jsonify, current_app

from ai.models.authorization import AuthorizationRecommendationInput
from ai.models.base import InvalidPredictionInput
from ai.models.no_show import NoShowPredictionInput
from ai.models.scheduling import SchedulingOptimizationInput
from ai.pipeline.ocr_pipeline import OCRProcessingInput
from app.middleware.auth import require_auth, require_roles, get_current_user_id, get_current_role
from app.services.services import AuditService

predictions_bp = Blueprint("predictions", __name__)


def _ai():
    return current_app.extensions["ai_service"]


def _parse(input_cls, body):
    """Build a typed input from a JSON body; malformed bodies become 422s."""
    if not isinstance(body, dict):
        raise InvalidPredictionInput("JSON object body required")
    try:
        return input_cls.from_dict(body)
    except InvalidPredictionInput:
        raise
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        raise InvalidPredictionInput(f"Malformed input: {e}") from e


@predictions_bp.route("/predictions/no-show", methods=["POST"])
@require_auth
def predict_no_show():
    features = _parse(NoShowPredictionInput, request.get_json(silent=True))
    prediction = _ai().predict_no_show_risk(features)
    return jsonify(prediction.to_dict())


@predictions_bp.route("/predictions/authorization", methods=["POST"])
@require_auth
def recommend_authorization():
    req = _parse(AuthorizationRecommendationInput, request.get_json(silent=True))
    recommendation = _ai().recommend_authorization(req)
    return jsonify(recommendation.to_dict())


@predictions_bp.route("/predictions/schedule", methods=["POST"])
@require_auth
@require_roles("admin", "provider", "staff")
def optimize_schedule():
    req = _parse(SchedulingOptimizationInput, request.get_json(silent=True))
    optimization = _ai().optimize_schedule(req)
    return jsonify(optimization.to_dict())


@predictions_bp.route("/predictions/ocr", methods=["POST"])
@require_auth
def process_document():
    req = _parse(OCRProcessingInput, request.get_json(silent=True))
    result = _ai().process_document(req)
    return jsonify(result.to_dict())


@predictions_bp.route("/predictions/batch", methods=["POST"])
@require_auth
def batch_predict():
    """
    Body: {"model_type": "...", "inputs": [{...}, ...]}
    Per-input failures are listed under "errors"; the request itself still succeeds.
    """
    data = request.get_json(silent=True) or {}
    model_type = data.get("model_type")
    inputs = data.get("inputs")
    if not model_type or not isinstance(inputs, list):
        return jsonify({"error": "model_type and inputs[] are required"}), 400

    return jsonify(_ai().batch_predict(model_type, inputs))


@predictions_bp.route("/predictions/cache/cleanup", methods=["POST"])
@require_auth
@require_roles("admin")
def cleanup_cache():
    deleted = _ai().cleanup_expired_cache()
    AuditService.log(
        "prediction_cache_cleaned",
        actor_id=get_current_user_id(),
        actor_role=get_current_role(),
        resource_type="prediction_cache",
        event_data={"deleted": deleted},
        request=request,
    )
    return jsonify({"deleted": deleted, "stats": _ai().cache.stats()})
