"""
ClinicFlow - Notification Service
Preference gating, per-user rate limiting, multi-channel delivery and digest queueing
"""

from __future__ import annotations
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ai.models.base import percent, to_jsonable

logger = logging.getLogger(__name__)

HIGH_RISK_ALERT = "high_risk_alert"
FREQUENCIES = ("immediate", "hourly", "daily", "disabled")
SMS_MAX_LENGTH = 160

SETTINGS_FIELDS = (
    "email_enabled",
    "sms_enabled",
    "push_enabled",
    "in_app_enabled",
    "email_high_risk_threshold",
    "sms_high_risk_threshold",
    "notification_frequency",
    "quiet_hours_start",
    "quiet_hours_end",
    "weekend_notifications",
)


@dataclass(frozen=True)
class NotificationSettings:
    email_enabled: bool = True
    sms_enabled: bool = False
    push_enabled: bool = False
    in_app_enabled: bool = True
    email_high_risk_threshold: float = 70
    sms_high_risk_threshold: float = 80
    notification_frequency: str = "immediate"
    quiet_hours_start: Optional[str] = None
    quiet_hours_end: Optional[str] = None
    weekend_notifications: bool = False

    @classmethod
    def from_row(cls, row: dict) -> "NotificationSettings":
        return cls(**{k: row[k] for k in SETTINGS_FIELDS if row.get(k) is not None})


@dataclass
class Notification:
    user_id: str
    type: str
    title: str
    message: str
    data: dict = field(default_factory=dict)
    expires_at: Optional[datetime] = None


def in_quiet_hours(now: datetime, start: Optional[str], end: Optional[str]) -> bool:
    """HH:MM window, both ends inclusive. A start later than the end wraps past midnight."""
    if not start or not end:
        return False
    current = now.strftime("%H:%M")
    if start <= end:
        return start <= current <= end
    return current >= start or current <= end


def format_sms_message(notification: Notification) -> str:
    message = notification.title
    risk_score = notification.data.get("risk_score")
    if notification.type == HIGH_RISK_ALERT and risk_score:
        message = f"High risk ({percent(risk_score)}%) no-show alert. Please confirm appointment."
    return message[:SMS_MAX_LENGTH]


def channel_message_type(notification_type: str) -> str:
    return {HIGH_RISK_ALERT: "risk_alert", "appointment_reminder": "reminder"}.get(notification_type, "system")


class RateLimiter:
    """Fixed one-hour window per (user, notification type)."""

    def __init__(
        self,
        high_risk_limit: int = 5,
        default_limit: int = 10,
        window: timedelta = timedelta(hours=1),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.high_risk_limit = high_risk_limit
        self.default_limit = default_limit
        self.window = window
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._windows: dict[tuple, list] = {}
        self._lock = threading.Lock()

    def _limit_for(self, notification_type: str) -> int:
        return self.high_risk_limit if notification_type == HIGH_RISK_ALERT else self.default_limit

    def allow(self, user_id: str, notification_type: str) -> bool:
        key = (user_id, notification_type)
        now = self._clock()
        with self._lock:
            entry = self._windows.get(key)
            if entry is None:
                return True
            count, reset_at = entry
            if now > reset_at:
                del self._windows[key]
                return True
            return count < self._limit_for(notification_type)

    def record(self, user_id: str, notification_type: str):
        key = (user_id, notification_type)
        now = self._clock()
        with self._lock:
            entry = self._windows.get(key)
            if entry and now < entry[1]:
                entry[0] += 1
            else:
                self._windows[key] = [1, now + self.window]


class NotificationService:
    """
    Delivers notifications according to each user's notification_settings row.

    Anything the settings defer (quiet hours, weekends, non-immediate frequency)
    is queued in-process and flushed as a digest by process_queued_notifications().
    Delivery failures are logged and never raised.
    """

    def __init__(
        self,
        supabase_client,
        clock: Optional[Callable[[], datetime]] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self._db = supabase_client
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.rate_limiter = rate_limiter or RateLimiter(clock=self._clock)
        self._queue: dict[str, list[Notification]] = defaultdict(list)
        self._queue_lock = threading.Lock()

    # ── gating ────────────────────────────

    def should_send(self, settings: NotificationSettings, notification: Notification, now: datetime) -> bool:
        if settings.notification_frequency == "disabled":
            return False
        if in_quiet_hours(now, settings.quiet_hours_start, settings.quiet_hours_end):
            return False
        # Python weekday: 5 = Saturday, 6 = Sunday
        if not settings.weekend_notifications and now.weekday() >= 5:
            return False
        if notification.type != HIGH_RISK_ALERT and settings.notification_frequency != "immediate":
            return False
        return True

    @staticmethod
    def meets_threshold(notification: Notification, threshold_pct: float) -> bool:
        if notification.type != HIGH_RISK_ALERT:
            return True
        risk_score = notification.data.get("risk_score")
        if not risk_score:
            return False
        return risk_score * 100 >= threshold_pct

    # ── lookups ───────────────────────────

    def get_settings(self, user_id: str) -> Optional[NotificationSettings]:
        try:
            rows = self._db.table("notification_settings").select("*").eq(
                "user_id", user_id
            ).limit(1).execute().data
        except Exception as e:
            logger.error(f"[Notifications] Failed to load settings for {user_id}: {e}")
            return None
        return NotificationSettings.from_row(rows[0]) if rows else None

    def _user_contact(self, user_id: str, column: str) -> Optional[str]:
        rows = self._db.table("users").select(column).eq("id", user_id).limit(1).execute().data
        return rows[0].get(column) if rows else None

    # ── send path ─────────────────────────

    def send_notification(self, notification: Notification) -> str:
        """Returns what happened: sent, queued, rate_limited or no_settings."""
        settings = self.get_settings(notification.user_id)
        if not settings:
            logger.warning(f"[Notifications] No notification settings for user {notification.user_id}")
            return "no_settings"

        if not self.should_send(settings, notification, self._clock()):
            self._enqueue(notification)
            return "queued"

        if not self.rate_limiter.allow(notification.user_id, notification.type):
            logger.warning(f"[Notifications] Rate limit exceeded for user {notification.user_id} ({notification.type})")
            return "rate_limited"

        if settings.in_app_enabled:
            self._send_in_app(notification)
        if settings.email_enabled and self.meets_threshold(notification, settings.email_high_risk_threshold):
            self._send_email(notification)
        if settings.sms_enabled and self.meets_threshold(notification, settings.sms_high_risk_threshold):
            self._send_sms(notification)
        if settings.push_enabled:
            self._send_push(notification)

        self.rate_limiter.record(notification.user_id, notification.type)
        return "sent"

    def _send_in_app(self, notification: Notification):
        try:
            self._db.table("notifications").insert({
                "user_id": notification.user_id,
                "type": notification.type,
                "title": notification.title,
                "message": notification.message,
                "data": to_jsonable(notification.data),
                "expires_at": notification.expires_at.isoformat() if notification.expires_at else None,
                "is_read": False,
            }).execute()
        except Exception as e:
            logger.error(f"[Notifications] In-app notification for {notification.user_id} failed: {e}")

    def _send_email(self, notification: Notification):
        try:
            email = self._user_contact(notification.user_id, "email")
            if not email:
                logger.warning(f"[Notifications] No email on file for user {notification.user_id}")
                return
            self._db.functions.invoke("send-email", invoke_options={"body": {
                "to": email,
                "subject": notification.title,
                "message": notification.message,
                "type": channel_message_type(notification.type),
                "data": to_jsonable(notification.data),
            }})
            self._log_history(notification, "email", email)
        except Exception as e:
            logger.error(f"[Notifications] Email notification for {notification.user_id} failed: {e}")

    def _send_sms(self, notification: Notification):
        try:
            phone = self._user_contact(notification.user_id, "phone")
            if not phone:
                logger.warning(f"[Notifications] No phone on file for user {notification.user_id}")
                return
            self._db.functions.invoke("send-sms", invoke_options={"body": {
                "to": phone,
                "message": format_sms_message(notification),
                "type": channel_message_type(notification.type),
            }})
            self._log_history(notification, "sms", phone)
        except Exception as e:
            logger.error(f"[Notifications] SMS notification for {notification.user_id} failed: {e}")

    def _send_push(self, notification: Notification):
        try:
            tokens = self._db.table("push_tokens").select("token, platform").eq(
                "user_id", notification.user_id
            ).eq("is_active", True).execute().data
            if not tokens:
                logger.info(f"[Notifications] No active push tokens for user {notification.user_id}")
                return
            self._db.functions.invoke("send-push-notification", invoke_options={"body": {
                "tokens": [t["token"] for t in tokens],
                "title": notification.title,
                "message": notification.message,
                "data": to_jsonable(notification.data),
            }})
            for t in tokens:
                self._log_history(notification, "push", t["token"])
        except Exception as e:
            logger.error(f"[Notifications] Push notification for {notification.user_id} failed: {e}")

    def _log_history(self, notification: Notification, channel: str, recipient: str):
        try:
            self._db.table("alert_history").insert({
                "appointment_id": notification.data.get("appointment_id"),
                "alert_sent_at": self._clock().isoformat(),
                "notification_type": channel,
                "recipient": recipient,
                "status": "sent",
            }).execute()
        except Exception as e:
            logger.error(f"[Notifications] Failed to log {channel} history: {e}")

    # ── queue / digests ───────────────────

    def _enqueue(self, notification: Notification):
        with self._queue_lock:
            self._queue[notification.user_id].append(notification)

    def queued_count(self, user_id: Optional[str] = None) -> int:
        with self._queue_lock:
            if user_id:
                return len(self._queue.get(user_id, []))
            return sum(len(v) for v in self._queue.values())

    @staticmethod
    def build_digest_message(notifications: list[Notification]) -> str:
        high_risk = sum(1 for n in notifications if n.type == HIGH_RISK_ALERT)
        reminders = sum(1 for n in notifications if n.type == "appointment_reminder")
        lines = [f"You have {len(notifications)} new alerts:"]
        if high_risk:
            lines.append(f"• {high_risk} high-risk appointments")
        if reminders:
            lines.append(f"• {reminders} appointment reminders")
        return "\n".join(lines) + "\n"

    def process_queued_notifications(self) -> int:
        """Flush each user's queue as per-type digests. Returns digests sent."""
        with self._queue_lock:
            pending = {uid: items for uid, items in self._queue.items() if items}
            self._queue.clear()

        sent = 0
        for user_id, items in pending.items():
            settings = self.get_settings(user_id)
            if not settings or settings.notification_frequency not in ("hourly", "daily"):
                continue

            by_type: dict[str, list[Notification]] = defaultdict(list)
            for n in items:
                by_type[n.type].append(n)

            label = settings.notification_frequency.capitalize()
            for group in by_type.values():
                self._send_in_app(Notification(
                    user_id=user_id,
                    type="system_alert",
                    title=f"{label} Alert Summary ({len(group)} alerts)",
                    message=self.build_digest_message(group),
                    data={
                        "notifications": [to_jsonable(n) for n in group],
                        "digest_type": settings.notification_frequency,
                    },
                ))
                sent += 1
        logger.info(f"[Notifications] Sent {sent} digests")
        return sent

    # ── settings / inbox ──────────────────

    def update_settings(self, user_id: str, settings: dict) -> bool:
        unknown = set(settings) - set(SETTINGS_FIELDS)
        if unknown:
            raise ValueError(f"Unknown notification settings: {sorted(unknown)}")
        freq = settings.get("notification_frequency")
        if freq is not None and freq not in FREQUENCIES:
            raise ValueError(f"notification_frequency must be one of {list(FREQUENCIES)}")
        try:
            self._db.table("notification_settings").upsert({
                "user_id": user_id,
                **settings,
                "updated_at": self._clock().isoformat(),
            }, on_conflict="user_id").execute()
            return True
        except Exception as e:
            logger.error(f"[Notifications] Failed to update settings for {user_id}: {e}")
            return False

    def get_unread(self, user_id: str) -> list[dict]:
        try:
            return self._db.table("notifications").select("*").eq("user_id", user_id).eq(
                "is_read", False
            ).order("created_at", desc=True).execute().data or []
        except Exception as e:
            logger.error(f"[Notifications] Failed to load unread notifications for {user_id}: {e}")
            return []

    def mark_read(self, notification_id: str, user_id: str) -> bool:
        try:
            self._db.table("notifications").update({
                "is_read": True,
                "read_at": self._clock().isoformat(),
            }).eq("id", notification_id).eq("user_id", user_id).execute()
            return True
        except Exception as e:
            logger.error(f"[Notifications] Failed to mark {notification_id} read: {e}")
            return False
