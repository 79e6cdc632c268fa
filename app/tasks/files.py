import logging

from app.celery_app import celery_app
from app.config import settings
from app.db import SessionLocal
from app.services.object_storage import get_s3_storage
from app.services.thumbnails import ThumbnailService
from app.services.upload_requests import upload_requests

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.files.sweep_thumbnail_backlog")
def sweep_thumbnail_backlog():
    service = ThumbnailService(storage=get_s3_storage())
    count = service.process_backlog()
    logger.info("thumbnail_sweep_done count=%s", count)
    return count


@celery_app.task(name="app.tasks.files.cleanup_upload_requests")
def cleanup_upload_requests():
    session = SessionLocal()
    try:
        return upload_requests.cleanup_stale(
            session, settings.upload_request_retention_hours
        )
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
