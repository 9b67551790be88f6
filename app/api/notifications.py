"""
ClinicFlow - Notifications API Blueprint
"""

from flask import Blueprint, request, jsonify, current_app

from app.middleware.auth import require_auth, get_current_user
from app.utils.pagination import paginate_query

notifications_bp = Blueprint("notifications", __name__)


@notifications_bp.route("/notifications", methods=["GET"])
@require_auth
def list_notifications():
    user = get_current_user()
    supabase = current_app.extensions["supabase"]
    page = max(1, request.args.get("page", 1, type=int))
    page_size = max(1, min(request.args.get("page_size", 20, type=int), 50))
    unread_only = request.args.get("unread_only", "false").lower() == "true"

    query = supabase.table("notifications").select("*", count="exact").eq("user_id", user["id"])
    if unread_only:
        query = query.eq("is_read", False)

    result = paginate_query(query.order("created_at", desc=True), page, page_size).execute()
    notifications = result.data or []

    return jsonify({
        "notifications": notifications,
        "total": result.count,
        "unread_count": sum(1 for n in notifications if not n.get("is_read")),
    })


@notifications_bp.route("/notifications/<notification_id>/read", methods=["POST"])
@require_auth
def mark_read(notification_id: str):
    user = get_current_user()
    if not current_app.extensions["notifications"].mark_read(notification_id, user["id"]):
        return jsonify({"error": "Failed to mark notification as read"}), 500
    return jsonify({"message": "Marked as read"})


@notifications_bp.route("/notifications/settings", methods=["PUT"])
@require_auth
def update_settings():
    user = get_current_user()
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return jsonify({"error": "Settings object required"}), 400

    try:
        ok = current_app.extensions["notifications"].update_settings(user["id"], data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if not ok:
        return jsonify({"error": "Failed to update settings"}), 500
    return jsonify({"message": "Settings updated"})
