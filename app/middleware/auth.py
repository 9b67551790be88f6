"""
ClinicFlow - Request Authentication
Supabase bearer tokens resolved to a users row, plus clinic role checks
"""

from __future__ import annotations
import functools
import logging
from typing import Callable, Optional

from flask import request, g, jsonify, current_app

from app.services.supabase_client import get_user_from_token

logger = logging.getLogger(__name__)

ROLES = ("admin", "provider", "staff", "reviewer")


def _bearer_token() -> Optional[str]:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def require_auth(f: Callable) -> Callable:
    """
    Resolve the bearer token to an active users row and park it on g.current_user.
    Missing, invalid or expired tokens and deactivated accounts get a 401.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authorization token required"}), 401

        user = get_user_from_token(token, current_app.extensions.get("supabase"))
        if not user:
            return jsonify({"error": "Invalid or expired token"}), 401

        if not user.get("is_active", True):
            logger.info(f"[Auth] Rejected deactivated account {user.get('id')} on {request.path}")
            return jsonify({"error": "Account deactivated"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated


def require_roles(*roles: str) -> Callable:
    """Restrict an endpoint to clinic roles. Goes below @require_auth."""
    unknown = set(roles) - set(ROLES)
    if unknown:
        raise ValueError(f"Unknown roles: {sorted(unknown)}")

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = get_current_user()
            if not user:
                return jsonify({"error": "Authentication required"}), 401

            role = user.get("role")
            if role not in roles:
                logger.info(f"[Auth] {user.get('id')} ({role}) denied {request.method} {request.path}")
                return jsonify({
                    "error": "Insufficient permissions",
                    "required_roles": list(roles),
                    "current_role": role,
                }), 403

            return f(*args, **kwargs)
        return decorated
    return decorator


def get_current_user() -> Optional[dict]:
    return getattr(g, "current_user", None)


def get_current_user_id() -> Optional[str]:
    user = get_current_user()
    return str(user["id"]) if user else None


def get_current_role() -> Optional[str]:
    user = get_current_user()
    return user.get("role") if user else None
