"""
ClinicFlow - Service Layer
Audit logging and risk analytics services
"""

from __future__ import annotations
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from ai.models.base import classify_risk

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────
# AUDIT SERVICE
# ─────────────────────────────────────────

class AuditService:
    """
    Append-only audit event logger.
    All events are written to the audit_logs table; failures never reach the caller.
    """

    @staticmethod
    def log(
        event_type: str,
        actor_id: Optional[str] = None,
        actor_role: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        event_data: Optional[dict] = None,
        request=None,
    ):
        try:
            from app.services.supabase_client import get_db
            supabase = get_db()

            record = {
                "event_type": event_type,
                "actor_id": str(actor_id) if actor_id else None,
                "actor_role": actor_role,
                "resource_type": resource_type,
                "resource_id": str(resource_id) if resource_id else None,
                "event_data": event_data or {},
            }

            if request:
                record["ip_address"] = request.remote_addr
                record["user_agent"] = request.headers.get("User-Agent", "")[:500]
                record["session_id"] = request.headers.get("X-Session-ID")

            supabase.table("audit_logs").insert(record).execute()

        except Exception as e:
            logger.error(f"[AuditService] Failed to log event {event_type}: {e}")

    @staticmethod
    def log_system(
        event_type: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        event_data: Optional[dict] = None,
    ):
        """Log a system-generated event (no human actor)."""
        AuditService.log(
            event_type=event_type,
            actor_id=None,
            actor_role=None,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id else None,
            event_data=event_data,
        )


# ─────────────────────────────────────────
# RISK ANALYTICS SERVICE
# ─────────────────────────────────────────

class RiskAnalyticsService:
    def __init__(self, supabase_client, clock=None):
        self._db = supabase_client
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get_risk_statistics(self, days: int = 30, provider_id: Optional[str] = None) -> Optional[dict]:
        """
        Totals, average score, per-level distribution and a per-day trend
        over the last `days` days of risk assessments. None on lookup failure.
        """
        cutoff = (self._clock() - timedelta(days=days)).isoformat()
        try:
            query = self._db.table("risk_assessments").select(
                "risk_score, risk_level, assessed_at, provider_id"
            ).gte("assessed_at", cutoff)
            if provider_id:
                query = query.eq("provider_id", provider_id)
            rows = query.execute().data or []
        except Exception as e:
            logger.error(f"[RiskAnalytics] Failed to fetch risk assessments: {e}")
            return None

        distribution = {"low": 0, "medium": 0, "high": 0}
        daily = {}
        total_score = 0.0
        for row in rows:
            score = float(row.get("risk_score") or 0)
            total_score += score
            # Recompute the level so rows written by older scorers bucket consistently
            distribution[classify_risk(score)] += 1

            day = str(row.get("assessed_at", ""))[:10]
            bucket = daily.setdefault(day, {"total": 0, "sum": 0.0})
            bucket["total"] += 1
            bucket["sum"] += score

        return {
            "total_assessments": len(rows),
            "average_risk_score": round(total_score / len(rows), 4) if rows else 0.0,
            "risk_distribution": distribution,
            "trend_data": [
                {
                    "date": day,
                    "average_risk": round(b["sum"] / b["total"], 4),
                    "assessment_count": b["total"],
                }
                for day, b in sorted(daily.items())
            ],
        }
