"""Celery application for METABYTE chat maintenance jobs."""

from celery import Celery

from src.config import settings

celery = Celery("metabyte")

celery.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_result_backend,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_routes={
        "src.modules.chat.tasks.*": {"queue": "chat-maintenance"},
    },
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    broker_transport_options={
        "max_retries": 10,
        "interval_start": 0.2,
        "interval_step": 0.5,
        "interval_max": 5.0,
        "retry_on_timeout": True,
        "visibility_timeout": 3600,
    },
    beat_schedule={
        # The sweep is idempotent; a run that misses its slot is superseded by the next one
        "chat-mark-abandoned-sessions": {
            "task": "src.modules.chat.tasks.mark_abandoned_sessions",
            "schedule": settings.chat_abandon_sweep_seconds,
            "options": {"expires": settings.chat_abandon_sweep_seconds},
        },
    },
)

celery.autodiscover_tasks(["src.modules.chat"])
