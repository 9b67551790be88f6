"""
ClinicFlow - Configuration
Environment-aware settings management
"""

import os


class BaseConfig:
    # Core
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-in-production")
    DEBUG = False
    TESTING = False

    # Supabase
    SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
    SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")
    SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY", "")
    SUPABASE_JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET", "")

    # Redis / Celery
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
    CELERY_TASK_ALWAYS_EAGER = False

    # CORS
    ALLOWED_ORIGINS = os.environ.get("ALLOWED_ORIGINS", "*").split(",")

    # JWT
    JWT_ALGORITHM = "HS256"

    # Prediction cache
    PREDICTION_MEMORY_TTL_SECONDS = int(os.environ.get("PREDICTION_MEMORY_TTL_SECONDS", 300))
    PREDICTION_CACHE_TTL_HOURS = int(os.environ.get("PREDICTION_CACHE_TTL_HOURS", 24))

    # AI Thresholds
    RISK_ALERT_THRESHOLD = 0.7
    OCR_CONFIDENCE_THRESHOLD = 0.8

    # Scheduling economics (per provider-day)
    SCHEDULE_DAILY_SLOT_CAPACITY = int(os.environ.get("SCHEDULE_DAILY_SLOT_CAPACITY", 16))
    SCHEDULE_REVENUE_PER_APPOINTMENT = float(os.environ.get("SCHEDULE_REVENUE_PER_APPOINTMENT", 150))
    SCHEDULE_NO_SHOW_RATE = float(os.environ.get("SCHEDULE_NO_SHOW_RATE", 0.15))

    # Notifications (per user, per hour)
    NOTIFICATION_HIGH_RISK_HOURLY_LIMIT = 5
    NOTIFICATION_DEFAULT_HOURLY_LIMIT = 10

    # Pagination
    DEFAULT_PAGE_SIZE = 20
    MAX_PAGE_SIZE = 100


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    ALLOWED_ORIGINS = ["*"]


class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    REDIS_URL = "redis://localhost:6379/1"
    CELERY_TASK_ALWAYS_EAGER = True
    SUPABASE_JWT_SECRET = "test-jwt-secret"


class ProductionConfig(BaseConfig):
    DEBUG = False

    @property
    def SUPABASE_URL(self):
        val = os.environ.get("SUPABASE_URL")
        if not val:
            raise RuntimeError("SUPABASE_URL environment variable is required in production")
        return val

    @property
    def SUPABASE_SERVICE_KEY(self):
        val = os.environ.get("SUPABASE_SERVICE_KEY")
        if not val:
            raise RuntimeError("SUPABASE_SERVICE_KEY environment variable is required in production")
        return val


config_map = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}
