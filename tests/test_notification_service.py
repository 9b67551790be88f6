from datetime import datetime, timezone

import pytest

from app.services.notification_service import (
    HIGH_RISK_ALERT,
    Notification,
    NotificationService,
    NotificationSettings,
    RateLimiter,
    channel_message_type,
    format_sms_message,
    in_quiet_hours,
)

PROVIDER = "user-provider"


def settings_row(**overrides):
    row = {
        "user_id": PROVIDER,
        "email_enabled": True,
        "sms_enabled": False,
        "push_enabled": False,
        "in_app_enabled": True,
        "email_high_risk_threshold": 70,
        "sms_high_risk_threshold": 80,
        "notification_frequency": "immediate",
        "weekend_notifications": False,
    }
    row.update(overrides)
    return row


def high_risk(score=0.85, appointment_id="apt-1"):
    return Notification(
        user_id=PROVIDER,
        type=HIGH_RISK_ALERT,
        title="High No-Show Risk Alert",
        message="Jane Roe has 85% no-show risk",
        data={"appointment_id": appointment_id, "risk_score": score},
    )


def reminder():
    return Notification(user_id=PROVIDER, type="appointment_reminder", title="Reminder", message="Tomorrow 9:00")


@pytest.fixture
def service(db, clock):
    return NotificationService(db, clock=clock)


def with_settings(db, **overrides):
    db.tables["notification_settings"] = [settings_row(**overrides)]


class TestQuietHours:
    @pytest.mark.parametrize("start,end,expected", [
        ("09:00", "11:00", True),
        ("10:00", "10:00", True),
        ("10:01", "12:00", False),
        ("22:00", "10:00", True),
        ("22:00", "07:00", False),
        (None, "07:00", False),
    ])
    def test_window(self, clock, start, end, expected):
        assert in_quiet_hours(clock.now, start, end) is expected

    def test_wraps_past_midnight(self):
        late = datetime(2024, 6, 12, 23, 30, tzinfo=timezone.utc)
        assert in_quiet_hours(late, "22:00", "07:00")


class TestShouldSend:
    def test_defaults_allow_weekday_delivery(self, service, clock):
        assert service.should_send(NotificationSettings(), high_risk(), clock.now)

    def test_disabled(self, service, clock):
        settings = NotificationSettings(notification_frequency="disabled")
        assert not service.should_send(settings, high_risk(), clock.now)

    def test_quiet_hours(self, service, clock):
        settings = NotificationSettings(quiet_hours_start="09:30", quiet_hours_end="10:30")
        assert not service.should_send(settings, high_risk(), clock.now)

    def test_weekend(self, service, clock):
        clock.advance(days=3)  # Saturday
        assert not service.should_send(NotificationSettings(), high_risk(), clock.now)
        assert service.should_send(NotificationSettings(weekend_notifications=True), high_risk(), clock.now)

    def test_batched_frequency_only_lets_high_risk_through(self, service, clock):
        settings = NotificationSettings(notification_frequency="hourly")
        assert service.should_send(settings, high_risk(), clock.now)
        assert not service.should_send(settings, reminder(), clock.now)


class TestThresholds:
    def test_high_risk_compared_as_percentage(self):
        assert NotificationService.meets_threshold(high_risk(0.85), 80)
        assert not NotificationService.meets_threshold(high_risk(0.75), 80)

    def test_missing_score_never_meets(self):
        n = high_risk()
        n.data.pop("risk_score")
        assert not NotificationService.meets_threshold(n, 10)

    def test_other_types_always_meet(self):
        assert NotificationService.meets_threshold(reminder(), 99)


class TestSendNotification:
    def test_no_settings(self, service, db):
        assert service.send_notification(high_risk()) == "no_settings"
        assert db.ops("notifications") == []

    def test_in_app_and_email(self, service, db):
        with_settings(db)
        assert service.send_notification(high_risk()) == "sent"

        inbox = db.tables["notifications"]
        assert len(inbox) == 1
        assert inbox[0]["is_read"] is False
        assert inbox[0]["data"]["risk_score"] == 0.85

        name, body = db.functions.invocations[0]
        assert name == "send-email"
        assert body["to"] == "dr.lee@clinic.test"
        assert body["type"] == "risk_alert"

        history = db.tables["alert_history"]
        assert [(h["notification_type"], h["recipient"], h["status"]) for h in history] == [
            ("email", "dr.lee@clinic.test", "sent"),
        ]
        assert history[0]["appointment_id"] == "apt-1"

    def test_email_below_threshold(self, service, db):
        with_settings(db, email_high_risk_threshold=90)
        service.send_notification(high_risk(0.85))
        assert db.functions.invocations == []
        assert len(db.tables["notifications"]) == 1

    def test_sms(self, service, db):
        with_settings(db, email_enabled=False, sms_enabled=True)
        service.send_notification(high_risk(0.85))
        assert db.functions.invocations == [("send-sms", {
            "to": "+15550100",
            "message": "High risk (85%) no-show alert. Please confirm appointment.",
            "type": "risk_alert",
        })]

    def test_push_to_active_tokens(self, service, db):
        with_settings(db, email_enabled=False, push_enabled=True)
        db.tables["push_tokens"] = [
            {"user_id": PROVIDER, "token": "tok-a", "platform": "ios", "is_active": True},
            {"user_id": PROVIDER, "token": "tok-b", "platform": "android", "is_active": False},
            {"user_id": "someone-else", "token": "tok-c", "platform": "ios", "is_active": True},
        ]
        service.send_notification(high_risk())

        name, body = db.functions.invocations[0]
        assert name == "send-push-notification"
        assert body["tokens"] == ["tok-a"]
        assert [h["recipient"] for h in db.tables["alert_history"]] == ["tok-a"]

    def test_channel_failure_does_not_stop_other_channels(self, service, db):
        with_settings(db, sms_enabled=True)
        db.fail_on("functions", "send-email")
        assert service.send_notification(high_risk()) == "sent"
        assert [name for name, _ in db.functions.invocations] == ["send-sms"]
        assert len(db.tables["notifications"]) == 1

    def test_deferred_notification_is_queued(self, service, db):
        with_settings(db, quiet_hours_start="09:00", quiet_hours_end="11:00")
        assert service.send_notification(high_risk()) == "queued"
        assert service.queued_count(PROVIDER) == 1
        assert db.ops("notifications") == []


class TestRateLimiting:
    def test_high_risk_limit_per_hour(self, service, db, clock):
        with_settings(db, email_enabled=False)
        outcomes = [service.send_notification(high_risk()) for _ in range(6)]
        assert outcomes == ["sent"] * 5 + ["rate_limited"]
        assert len(db.tables["notifications"]) == 5

        clock.advance(minutes=61)
        assert service.send_notification(high_risk()) == "sent"

    def test_limits_are_per_type(self, clock):
        limiter = RateLimiter(high_risk_limit=1, default_limit=2, clock=clock)
        limiter.record(PROVIDER, HIGH_RISK_ALERT)
        assert not limiter.allow(PROVIDER, HIGH_RISK_ALERT)
        assert limiter.allow(PROVIDER, "appointment_reminder")
        assert limiter.allow("user-admin", HIGH_RISK_ALERT)


class TestDigests:
    def test_digest_message(self):
        message = NotificationService.build_digest_message([high_risk(), high_risk(), reminder()])
        assert message == (
            "You have 3 new alerts:\n"
            "• 2 high-risk appointments\n"
            "• 1 appointment reminders\n"
        )

    def test_flush_sends_one_digest_per_type(self, service, db):
        with_settings(db, notification_frequency="daily", quiet_hours_start="09:00", quiet_hours_end="11:00")
        for n in (high_risk(appointment_id="apt-1"), high_risk(appointment_id="apt-2"), reminder()):
            service.send_notification(n)
        assert service.queued_count() == 3

        assert service.process_queued_notifications() == 2
        assert service.queued_count() == 0

        digests = {row["title"]: row for row in db.tables["notifications"]}
        assert set(digests) == {"Daily Alert Summary (2 alerts)", "Daily Alert Summary (1 alerts)"}
        two = digests["Daily Alert Summary (2 alerts)"]
        assert two["type"] == "system_alert"
        assert two["message"] == "You have 2 new alerts:\n• 2 high-risk appointments\n"
        assert two["data"]["digest_type"] == "daily"
        assert [n["data"]["appointment_id"] for n in two["data"]["notifications"]] == ["apt-1", "apt-2"]

    def test_immediate_users_get_no_digest(self, service, db):
        with_settings(db, quiet_hours_start="09:00", quiet_hours_end="11:00")
        service.send_notification(high_risk())
        assert service.process_queued_notifications() == 0
        assert service.queued_count() == 0


class TestSettingsAndInbox:
    def test_update_settings_upserts(self, service, db):
        assert service.update_settings(PROVIDER, {"sms_enabled": True})
        assert service.update_settings(PROVIDER, {"notification_frequency": "hourly"})
        rows = db.tables["notification_settings"]
        assert len(rows) == 1
        assert rows[0]["sms_enabled"] is True
        assert rows[0]["notification_frequency"] == "hourly"

    def test_update_settings_rejects_unknown_fields(self, service):
        with pytest.raises(ValueError):
            service.update_settings(PROVIDER, {"favourite_colour": "blue"})

    def test_update_settings_rejects_bad_frequency(self, service):
        with pytest.raises(ValueError):
            service.update_settings(PROVIDER, {"notification_frequency": "weekly"})

    def test_update_settings_failure(self, service, db):
        db.fail_on("notification_settings", "upsert")
        assert service.update_settings(PROVIDER, {"sms_enabled": True}) is False

    def test_unread_and_mark_read(self, service, db):
        db.tables["notifications"] = [
            {"id": "n1", "user_id": PROVIDER, "is_read": False, "created_at": "2024-06-10T00:00:00+00:00"},
            {"id": "n2", "user_id": PROVIDER, "is_read": False, "created_at": "2024-06-11T00:00:00+00:00"},
            {"id": "n3", "user_id": PROVIDER, "is_read": True, "created_at": "2024-06-09T00:00:00+00:00"},
        ]
        assert [n["id"] for n in service.get_unread(PROVIDER)] == ["n2", "n1"]

        assert service.mark_read("n2", PROVIDER)
        assert [n["id"] for n in service.get_unread(PROVIDER)] == ["n1"]

    def test_mark_read_is_scoped_to_owner(self, service, db):
        db.tables["notifications"] = [{"id": "n1", "user_id": PROVIDER, "is_read": False}]
        service.mark_read("n1", "user-admin")
        assert db.tables["notifications"][0]["is_read"] is False


class TestFormatting:
    def test_sms_truncated(self):
        n = Notification(user_id=PROVIDER, type="system_alert", title="x" * 200, message="")
        assert len(format_sms_message(n)) == 160

    def test_channel_message_type(self):
        assert channel_message_type(HIGH_RISK_ALERT) == "risk_alert"
        assert channel_message_type("appointment_reminder") == "reminder"
        assert channel_message_type("system_alert") == "system"
