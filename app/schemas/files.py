from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.file_storage import ThumbnailStatus, UploadRequestStatus


class UploadUrlRequest(BaseModel):
    p_entity_type: str = Field(min_length=1, max_length=100)
    p_entity_id: str = Field(min_length=1, max_length=100)
    p_file_name: str = Field(min_length=1, max_length=255)
    p_file_type: str = Field(min_length=1, max_length=255)


class UploadUrlStatus(BaseModel):
    status: UploadRequestStatus
    url: str | None = None
    file_id: UUID | None = None
    s3_key: str | None = None
    error: str | None = None


class FileCreate(BaseModel):
    id: UUID
    entity_type: str = Field(min_length=1, max_length=100)
    entity_id: str = Field(min_length=1, max_length=100)
    file_name: str = Field(min_length=1, max_length=255)
    file_type: str = Field(min_length=1, max_length=255)
    file_size: int = Field(ge=0)
    s3_original_key: str = Field(min_length=1, max_length=1024)


class FileRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entity_type: str
    entity_id: str
    file_name: str
    file_type: str
    file_size: int
    s3_key_prefix: str
    s3_original_key: str
    s3_thumbnail_small_key: str | None = None
    s3_thumbnail_medium_key: str | None = None
    s3_thumbnail_large_key: str | None = None
    thumbnail_status: ThumbnailStatus
    thumbnail_error: str | None = None
    created_at: datetime
    updated_at: datetime
