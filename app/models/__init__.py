from app.models.file_storage import (
    FileUploadRequest,
    StoredFile,
    ThumbnailStatus,
    UploadRequestStatus,
)

__all__ = [
    "FileUploadRequest",
    "StoredFile",
    "ThumbnailStatus",
    "UploadRequestStatus",
]
