"""
ClinicFlow - Health Check
"""

from flask import Blueprint, jsonify, current_app
import os

health_bp = Blueprint("health", __name__)


@health_bp.route("/health", methods=["GET"])
def health():
    cache = current_app.extensions.get("prediction_cache")
    return jsonify({
        "status": "healthy",
        "service": "clinicflow-api",
        "version": os.environ.get("APP_VERSION", "1.0.0"),
        "prediction_cache": cache.stats() if cache else None,
    })
