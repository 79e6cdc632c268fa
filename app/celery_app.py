from celery import Celery
from celery.schedules import crontab

from app.config import settings
from app.logging import configure_logging


def get_celery_config() -> dict:
    return {
        "broker_url": settings.celery_broker_url,
        "result_backend": settings.celery_result_backend,
        "timezone": settings.celery_timezone,
        "task_serializer": "json",
        "accept_content": ["json"],
        "result_serializer": "json",
        "worker_hijack_root_logger": False,
    }


def build_beat_schedule() -> dict:
    return {
        "sweep_thumbnail_backlog": {
            "task": "app.tasks.files.sweep_thumbnail_backlog",
            "schedule": settings.thumbnail_sweep_interval_minutes * 60,
        },
        "cleanup_upload_requests": {
            "task": "app.tasks.files.cleanup_upload_requests",
            "schedule": crontab(minute=0),
        },
    }


configure_logging()
celery_app = Celery("civic_files")
celery_app.conf.update(get_celery_config())
celery_app.conf.beat_schedule = build_beat_schedule()
celery_app.autodiscover_tasks(["app.tasks"])
