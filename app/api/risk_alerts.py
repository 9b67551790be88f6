"""
ClinicFlow - Risk Alerts API Blueprint
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone

from flask import Blueprint, request, jsonify, current_app

from ai.models.base import parse_datetime
from app.middleware.auth import require_auth, require_roles, get_current_user_id
from app.tasks.ai_tasks import assess_appointment_risk

risk_bp = Blueprint("risk_alerts", __name__)


@risk_bp.route("/risk/appointments/<appointment_id>/assess", methods=["POST"])
@require_auth
@require_roles("admin", "provider", "staff")
def assess_appointment(appointment_id: str):
    data = request.get_json(silent=True) or {}
    if data.get("async"):
        job = assess_appointment_risk.apply_async(args=[appointment_id])
        return jsonify({"appointment_id": appointment_id, "job_id": job.id, "status": "queued"}), 202

    prediction = current_app.extensions["risk_assessment"].calculate_real_time_risk(
        appointment_id, weather=data.get("weather_conditions")
    )
    if prediction is None:
        return jsonify({"error": "Appointment not found"}), 404
    return jsonify(prediction.to_dict())


@risk_bp.route("/risk/alerts", methods=["GET"])
@require_auth
def active_alerts():
    """Active alerts created in [start, end]; defaults to the last 7 days."""
    now = datetime.now(timezone.utc)
    try:
        start = parse_datetime(request.args["start"]) if request.args.get("start") else now - timedelta(days=7)
        end = parse_datetime(request.args["end"]) if request.args.get("end") else now
    except ValueError:
        return jsonify({"error": "start and end must be ISO-8601 timestamps"}), 400

    alerts = current_app.extensions["risk_assessment"].get_active_risk_alerts(
        start, end, provider_id=request.args.get("provider_id")
    )
    return jsonify({"alerts": alerts, "total": len(alerts)})


@risk_bp.route("/risk/alerts/<alert_id>/acknowledge", methods=["POST"])
@require_auth
@require_roles("admin", "provider", "staff")
def acknowledge_alert(alert_id: str):
    data = request.get_json(silent=True) or {}
    ok = current_app.extensions["risk_assessment"].acknowledge_risk_alert(
        alert_id, get_current_user_id(), data.get("action")
    )
    if not ok:
        return jsonify({"error": "Failed to acknowledge alert"}), 500
    return jsonify({"message": "Alert acknowledged"})


@risk_bp.route("/risk/statistics", methods=["GET"])
@require_auth
def risk_statistics():
    days = request.args.get("days", 30, type=int)
    if days < 1:
        return jsonify({"error": "days must be positive"}), 400

    stats = current_app.extensions["risk_analytics"].get_risk_statistics(
        days=days, provider_id=request.args.get("provider_id")
    )
    if stats is None:
        return jsonify({"error": "Failed to compute risk statistics"}), 500
    return jsonify(stats)
