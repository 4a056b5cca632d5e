"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "swiftbuyback",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.reoffers"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.reoffers.*": {"queue": "lifecycle"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # ── Re-offer auto-resolution ────────────────────────────────
        "auto-resolve-reoffers-daily": {
            "task": "workers.reoffers.auto_resolve_expired_reoffers",
            "schedule": crontab(hour=settings.reoffer_sweep_hour, minute=0),
            "options": {"queue": "lifecycle"},
        },
    },
)
