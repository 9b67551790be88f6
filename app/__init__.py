import importlib
import logging

from flask import Flask, jsonify
from flask_cors import CORS

from ai.models.base import InvalidPredictionInput
from app.extensions import init_extensions
from app.services.ai_service import PredictionError
from app.services.exception_handling import InvalidReviewTransition, ReviewTaskNotFound
from config.settings import config_map

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BLUEPRINTS = [
    ("app.api.health", "health_bp"),
    ("app.api.predictions", "predictions_bp"),
    ("app.api.intake", "intake_bp"),
    ("app.api.risk_alerts", "risk_bp"),
    ("app.api.notifications", "notifications_bp"),
]


def create_app(config_name="production", supabase_client=None):
    app = Flask(__name__)

    # Production config validates required env vars through properties
    config_cls = config_map.get(config_name, config_map["production"])
    app.config.from_object(config_cls())

    CORS(app, resources={r"/api/*": {"origins": app.config["ALLOWED_ORIGINS"]}})

    if supabase_client is None:
        from app.services.supabase_client import get_supabase_admin
        supabase_client = get_supabase_admin()
    init_extensions(app, supabase_client)

    register_blueprints(app)
    register_error_handlers(app)
    return app


def register_blueprints(app):
    for module_path, bp_name in BLUEPRINTS:
        module = importlib.import_module(module_path)
        app.register_blueprint(getattr(module, bp_name), url_prefix="/api")
        logger.debug(f"Registered blueprint: {bp_name} from {module_path}")


def register_error_handlers(app):
    @app.errorhandler(InvalidPredictionInput)
    def invalid_input(e):
        return jsonify({"error": str(e)}), 422

    @app.errorhandler(PredictionError)
    def prediction_failed(e):
        return jsonify({"error": "Prediction could not be computed"}), 500

    @app.errorhandler(ReviewTaskNotFound)
    def review_not_found(e):
        return jsonify({"error": f"Review task not found: {e}"}), 404

    @app.errorhandler(InvalidReviewTransition)
    def invalid_transition(e):
        return jsonify({"error": str(e)}), 409
