"""Celery application instance shared across the backend.

Start a worker with:
    celery -A app.celery_app worker -Q delivery -l info --concurrency=2
"""

from celery import Celery

from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("circles_backend", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.task_default_retry_delay = 30  # seconds

celery_app.conf.task_routes = {
    "app.workers.delivery.redeliver": {"queue": "delivery"},
}

# --- Ensure tasks are registered ---
import app.workers.delivery  # noqa: E402,F401
