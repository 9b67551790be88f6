"""
ClinicFlow - Celery Worker Entry Point

Start workers:
  celery -A celery_worker.celery worker --loglevel=info -Q ai_processing -c 2
  celery -A celery_worker.celery worker --loglevel=info -Q notifications,default -c 4

Start beat (scheduler):
  celery -A celery_worker.celery beat --loglevel=info
"""

import os

from app import create_app
from app.extensions import celery_app
from config.celery_schedule import CELERYBEAT_SCHEDULE

env = os.environ.get("FLASK_ENV", "production")
flask_app = create_app(env)

celery_app.conf.beat_schedule = CELERYBEAT_SCHEDULE
celery = celery_app

# Register task modules with the worker
import app.tasks.ai_tasks  # noqa: E402,F401
import app.tasks.maintenance_tasks  # noqa: E402,F401
