"""
ClinicFlow - Intake API Blueprint
Exception routing for automated intake and the manual review queue
"""

from __future__ import annotations

from flask import Blueprint, request, jsonify, current_app

from app.middleware.auth import require_auth, require_roles, get_current_user_id
from app.services.exception_handling import REVIEW_PRIORITIES, REVIEW_STATUSES
from app.tasks.ai_tasks import route_intake_exception

intake_bp = Blueprint("intake", __name__)

EXCEPTION_TYPES = {"low_confidence_ocr", "validation_failure", "complex_document", "system_error"}


def _page_args():
    cfg = current_app.config
    page = max(1, request.args.get("page", 1, type=int))
    page_size = request.args.get("page_size", cfg["DEFAULT_PAGE_SIZE"], type=int)
    return page, max(1, min(page_size, cfg["MAX_PAGE_SIZE"]))


@intake_bp.route("/intake/tasks/<task_id>/exceptions", methods=["POST"])
@require_auth
@require_roles("admin", "staff", "provider")
def report_exception(task_id: str):
    """
    Route an intake processing exception to a recovery strategy.
    Pass "async": true to hand the routing to the worker queue.
    """
    data = request.get_json(silent=True) or {}
    exception_type = data.get("exception_type")
    context = data.get("context") or {}
    if not exception_type:
        return jsonify({"error": "exception_type is required"}), 400
    if exception_type not in EXCEPTION_TYPES:
        return jsonify({"error": f"Unknown exception_type: {exception_type}"}), 422

    if data.get("async"):
        job = route_intake_exception.apply_async(args=[task_id, exception_type, context])
        return jsonify({"task_id": task_id, "job_id": job.id, "status": "queued"}), 202

    resolution = current_app.extensions["exception_handler"].handle_processing_exception(
        task_id, exception_type, context
    )
    return jsonify(resolution.to_dict())


@intake_bp.route("/intake/review-queue", methods=["GET"])
@require_auth
@require_roles("admin", "reviewer", "staff")
def list_review_queue():
    status = request.args.get("status")
    priority = request.args.get("priority")
    if status and status not in REVIEW_STATUSES:
        return jsonify({"error": f"Unknown status: {status}"}), 400
    if priority and priority not in REVIEW_PRIORITIES:
        return jsonify({"error": f"Unknown priority: {priority}"}), 400

    page, page_size = _page_args()
    return jsonify(current_app.extensions["exception_handler"].list_review_queue(
        status=status, priority=priority, page=page, page_size=page_size
    ))


@intake_bp.route("/intake/review-queue/<review_id>", methods=["PATCH"])
@require_auth
@require_roles("admin", "reviewer")
def update_review(review_id: str):
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        return jsonify({"error": "status is required"}), 400

    review = current_app.extensions["exception_handler"].update_review_status(
        review_id,
        data["status"],
        reviewer_id=get_current_user_id(),
        notes=data.get("notes"),
        corrected_data=data.get("corrected_data"),
    )
    return jsonify(review)
