"""Upload request jobs and file records for S3-backed entity attachments."""

import enum
import os
import time
import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base


def uuid7() -> uuid.UUID:
    """RFC 9562 UUIDv7: 48-bit unix millis followed by 74 random bits."""
    unix_ts_ms = int(time.time() * 1000)
    raw = bytearray(unix_ts_ms.to_bytes(6, "big") + os.urandom(10))
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return uuid.UUID(bytes=bytes(raw))


class UploadRequestStatus(enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class ThumbnailStatus(enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    not_applicable = "not_applicable"


class FileUploadRequest(Base):
    """Presigned URL job. Written by the client once, then by the signer."""

    __tablename__ = "file_upload_requests"
    __table_args__ = (
        Index("ix_file_upload_requests_status", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid7)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[UploadRequestStatus] = mapped_column(
        Enum(UploadRequestStatus, name="uploadrequeststatus"),
        default=UploadRequestStatus.pending,
        nullable=False,
    )
    presigned_url: Mapped[str | None] = mapped_column(Text)
    s3_key: Mapped[str | None] = mapped_column(String(1024))
    file_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )


class StoredFile(Base):
    """Metadata record for an uploaded original and its thumbnail renditions."""

    __tablename__ = "files"
    __table_args__ = (
        Index("ix_files_entity", "entity_type", "entity_id"),
        Index(
            "ix_files_thumbnail_status",
            "thumbnail_status",
            "created_at",
            postgresql_where=text("thumbnail_status IN ('pending', 'failed')"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid7)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)

    s3_key_prefix: Mapped[str] = mapped_column(String(1024), nullable=False)
    s3_original_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    s3_thumbnail_small_key: Mapped[str | None] = mapped_column(String(1024))
    s3_thumbnail_medium_key: Mapped[str | None] = mapped_column(String(1024))
    s3_thumbnail_large_key: Mapped[str | None] = mapped_column(String(1024))

    thumbnail_status: Mapped[ThumbnailStatus] = mapped_column(
        Enum(ThumbnailStatus, name="thumbnailstatus"),
        default=ThumbnailStatus.pending,
        nullable=False,
    )
    thumbnail_error: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    def thumbnail_keys(self) -> list[str]:
        return [
            key
            for key in (
                self.s3_thumbnail_small_key,
                self.s3_thumbnail_medium_key,
                self.s3_thumbnail_large_key,
            )
            if key
        ]
