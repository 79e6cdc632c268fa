"""File records: creation by the client, status transitions by the thumbnail worker."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta

from fastapi import HTTPException
from sqlalchemy import or_, select, text, update
from sqlalchemy.orm import Session

from app.models.file_storage import StoredFile, ThumbnailStatus, uuid7
from app.schemas.files import FileCreate
from app.services import notifications
from app.services.common import apply_pagination, parse_uuid_or_404
from app.services.file_keys import ThumbnailKind, key_prefix, original_key
from app.services.object_storage import ObjectStorageError, StorageService

logger = logging.getLogger(__name__)


def generate_file_id(db: Session) -> uuid.UUID:
    """Time-sortable file id from the database's UUIDv7 function."""
    if db.get_bind().dialect.name == "postgresql":
        value = db.execute(text("SELECT uuid_generate_v7()")).scalar_one()
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    return uuid7()


def initial_thumbnail_status(file_type: str) -> ThumbnailStatus:
    if ThumbnailKind.from_mime(file_type).has_thumbnails:
        return ThumbnailStatus.pending
    return ThumbnailStatus.not_applicable


def notification_payload(record: StoredFile) -> dict:
    return {
        "file_id": str(record.id),
        "s3_key": record.s3_original_key,
        "file_type": record.file_type,
        "entity_type": record.entity_type,
        "entity_id": record.entity_id,
    }


class StoredFiles:
    @staticmethod
    def create(db: Session, payload: FileCreate) -> StoredFile:
        expected_key = original_key(
            payload.entity_type, payload.entity_id, payload.id, payload.file_name
        )
        if payload.s3_original_key != expected_key:
            raise HTTPException(
                status_code=422,
                detail=f"s3_original_key must be {expected_key}",
            )
        if db.get(StoredFile, payload.id):
            raise HTTPException(status_code=409, detail="File record already exists")
        record = StoredFile(
            id=payload.id,
            entity_type=payload.entity_type,
            entity_id=payload.entity_id,
            file_name=payload.file_name,
            file_type=payload.file_type,
            file_size=payload.file_size,
            s3_key_prefix=key_prefix(payload.entity_type, payload.entity_id, payload.id),
            s3_original_key=payload.s3_original_key,
            thumbnail_status=initial_thumbnail_status(payload.file_type),
        )
        db.add(record)
        db.flush()
        if record.thumbnail_status == ThumbnailStatus.pending:
            notifications.publish(
                db, notifications.FILE_UPLOADED_CHANNEL, notification_payload(record)
            )
        db.commit()
        db.refresh(record)
        logger.info(
            "file_record_created file_id=%s entity=%s entity_id=%s thumbnail_status=%s",
            record.id,
            record.entity_type,
            record.entity_id,
            record.thumbnail_status.value,
        )
        return record

    @staticmethod
    def get(db: Session, file_id) -> StoredFile:
        record = db.get(StoredFile, parse_uuid_or_404(file_id, "File"))
        if not record:
            raise HTTPException(status_code=404, detail="File not found")
        return record

    @staticmethod
    def list_for_entity(
        db: Session, entity_type: str, entity_id: str, limit: int = 100, offset: int = 0
    ) -> list[StoredFile]:
        query = (
            db.query(StoredFile)
            .filter(StoredFile.entity_type == entity_type)
            .filter(StoredFile.entity_id == entity_id)
            .order_by(StoredFile.created_at.asc())
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def delete(db: Session, file_id, storage: StorageService) -> None:
        """Remove the row and every object key it references.

        Object deletion is best effort: a storage failure is logged and the
        row is still removed.
        """
        record = StoredFiles.get(db, file_id)
        keys = [record.s3_original_key, *record.thumbnail_keys()]
        for key in keys:
            try:
                storage.delete(key)
            except ObjectStorageError as exc:
                logger.warning("file_object_delete_failed file_id=%s key=%s error=%s", record.id, key, exc)
        db.delete(record)
        db.commit()
        logger.info("file_deleted file_id=%s keys=%s", file_id, len(keys))

    @staticmethod
    def claim_for_thumbnails(db: Session, file_id: uuid.UUID) -> bool:
        """pending/failed -> processing; False if the row is owned or finished."""
        result = db.execute(
            update(StoredFile)
            .where(StoredFile.id == file_id)
            .where(
                StoredFile.thumbnail_status.in_(
                    [ThumbnailStatus.pending, ThumbnailStatus.failed]
                )
            )
            .values(thumbnail_status=ThumbnailStatus.processing, updated_at=datetime.now(UTC))
        )
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def mark_not_applicable(db: Session, file_id: uuid.UUID) -> None:
        StoredFiles._set(db, file_id, thumbnail_status=ThumbnailStatus.not_applicable)

    @staticmethod
    def mark_failed(db: Session, file_id: uuid.UUID, error_message: str) -> None:
        StoredFiles._set(
            db,
            file_id,
            thumbnail_status=ThumbnailStatus.failed,
            thumbnail_error=error_message,
        )

    @staticmethod
    def complete_image(
        db: Session, file_id: uuid.UUID, *, small_key: str, medium_key: str, large_key: str
    ) -> None:
        StoredFiles._set(
            db,
            file_id,
            thumbnail_status=ThumbnailStatus.completed,
            s3_thumbnail_small_key=small_key,
            s3_thumbnail_medium_key=medium_key,
            s3_thumbnail_large_key=large_key,
            thumbnail_error=None,
        )

    @staticmethod
    def complete_pdf(db: Session, file_id: uuid.UUID, *, medium_key: str) -> None:
        StoredFiles._set(
            db,
            file_id,
            thumbnail_status=ThumbnailStatus.completed,
            s3_thumbnail_medium_key=medium_key,
            thumbnail_error=None,
        )

    @staticmethod
    def _set(db: Session, file_id: uuid.UUID, **values) -> None:
        db.execute(
            update(StoredFile)
            .where(StoredFile.id == file_id)
            .values(updated_at=datetime.now(UTC), **values)
        )
        db.commit()

    @staticmethod
    def thumbnail_backlog(
        db: Session, *, limit: int, cooldown_seconds: int, now: datetime | None = None
    ) -> list[StoredFile]:
        """Pending rows plus failed rows past the retry cooldown, oldest first."""
        cutoff = (now or datetime.now(UTC)) - timedelta(seconds=cooldown_seconds)
        stmt = (
            select(StoredFile)
            .where(
                or_(
                    StoredFile.thumbnail_status == ThumbnailStatus.pending,
                    (StoredFile.thumbnail_status == ThumbnailStatus.failed)
                    & (StoredFile.updated_at < cutoff),
                )
            )
            .order_by(StoredFile.created_at.asc())
            .limit(limit)
        )
        return list(db.scalars(stmt).all())


stored_files = StoredFiles()
