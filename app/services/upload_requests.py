"""Upload request jobs: the hand-off between the client and the URL signer.

The client creates a request and polls it; only the signing worker moves it
out of ``pending``. Every worker-side transition is a conditional update so
the row reaches a terminal status at most once.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta

from fastapi import HTTPException
from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from app.models.file_storage import FileUploadRequest, UploadRequestStatus
from app.services import notifications
from app.services.common import parse_uuid_or_404

logger = logging.getLogger(__name__)


def notification_payload(request: FileUploadRequest) -> dict:
    return {
        "requestId": str(request.id),
        "fileName": request.file_name,
        "fileType": request.file_type,
        "entityType": request.entity_type,
        "entityId": request.entity_id,
    }


class UploadRequests:
    @staticmethod
    def request_upload_url(
        db: Session,
        *,
        entity_type: str,
        entity_id: str,
        file_name: str,
        file_type: str,
    ) -> FileUploadRequest:
        request = FileUploadRequest(
            entity_type=entity_type,
            entity_id=entity_id,
            file_name=file_name,
            file_type=file_type,
            status=UploadRequestStatus.pending,
        )
        db.add(request)
        db.flush()
        notifications.publish(
            db, notifications.UPLOAD_URL_REQUEST_CHANNEL, notification_payload(request)
        )
        db.commit()
        db.refresh(request)
        logger.info(
            "upload_url_requested request_id=%s entity=%s entity_id=%s file_type=%s",
            request.id,
            entity_type,
            entity_id,
            file_type,
        )
        return request

    @staticmethod
    def get(db: Session, request_id) -> FileUploadRequest:
        request = db.get(FileUploadRequest, parse_uuid_or_404(request_id, "Upload request"))
        if not request:
            raise HTTPException(status_code=404, detail="Upload request not found")
        return request

    @staticmethod
    def claim(db: Session, request_id: uuid.UUID) -> bool:
        """pending -> processing; False when another worker got there first."""
        result = db.execute(
            update(FileUploadRequest)
            .where(FileUploadRequest.id == request_id)
            .where(FileUploadRequest.status == UploadRequestStatus.pending)
            .values(status=UploadRequestStatus.processing)
        )
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def complete(
        db: Session,
        request_id: uuid.UUID,
        *,
        presigned_url: str,
        s3_key: str,
        file_id: uuid.UUID,
    ) -> bool:
        result = db.execute(
            update(FileUploadRequest)
            .where(FileUploadRequest.id == request_id)
            .where(FileUploadRequest.status == UploadRequestStatus.processing)
            .values(
                status=UploadRequestStatus.completed,
                presigned_url=presigned_url,
                s3_key=s3_key,
                file_id=file_id,
            )
        )
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def fail(db: Session, request_id: uuid.UUID, error_message: str) -> bool:
        result = db.execute(
            update(FileUploadRequest)
            .where(FileUploadRequest.id == request_id)
            .where(
                FileUploadRequest.status.in_(
                    [UploadRequestStatus.pending, UploadRequestStatus.processing]
                )
            )
            .values(status=UploadRequestStatus.failed, error_message=error_message)
        )
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def cleanup_stale(db: Session, retention_hours: int) -> int:
        cutoff = datetime.now(UTC) - timedelta(hours=retention_hours)
        # SQLite hands back naive datetimes; don't compare loaded rows in Python
        result = db.execute(
            delete(FileUploadRequest)
            .where(FileUploadRequest.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount:
            logger.info("upload_requests_cleaned count=%s cutoff=%s", result.rowcount, cutoff)
        return result.rowcount


upload_requests = UploadRequests()
