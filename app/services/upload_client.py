"""Client-side upload orchestration against the Civic OS API.

The flow for one file:

1. validate locally (no I/O);
2. ask the API for an upload URL and poll until the signer answers;
3. PUT the bytes straight to object storage with the presigned URL;
4. create the file record;
5. optionally poll until thumbnails are done.

Each failure point raises its own ``FileUploadClientError`` subclass so the
caller can tell "fix your input" from "retry later" from "contact support".
"""

from __future__ import annotations

import logging
import mimetypes
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from uuid import UUID

import httpx

from app.config import settings
from app.models.file_storage import ThumbnailStatus, UploadRequestStatus
from app.schemas.files import FileRead, UploadUrlStatus
from app.services.file_keys import ThumbnailKind, original_key

logger = logging.getLogger(__name__)


class FileUploadClientError(Exception):
    """Base exception for client-side upload failures."""


class UploadValidationError(FileUploadClientError):
    """File rejected locally before any request was made."""


class SigningTimeoutError(FileUploadClientError):
    """No upload URL arrived within the polling budget."""


class SigningFailedError(FileUploadClientError):
    """The signing worker reported a failure."""


class UploadTransportError(FileUploadClientError):
    """The PUT to the presigned URL failed."""


class RecordCreationError(FileUploadClientError):
    """The object was stored but the API rejected the file record."""


class ThumbnailFailedError(FileUploadClientError):
    """The thumbnail worker reported a failure; the file itself is usable."""

    def __init__(self, message: str, file_record: FileRead):
        super().__init__(message)
        self.file_record = file_record


@dataclass(frozen=True)
class LocalFile:
    name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: str | Path, content_type: str | None = None) -> "LocalFile":
        path = Path(path)
        guessed = content_type or mimetypes.guess_type(path.name)[0]
        return cls(
            name=path.name,
            content_type=guessed or "application/octet-stream",
            data=path.read_bytes(),
        )


def _type_matches(file_type: str, pattern: str) -> bool:
    if pattern.endswith("/*"):
        return file_type.startswith(pattern[:-1])
    return file_type == pattern


def validate_file(
    file: LocalFile,
    allowed_types: str | None = None,
    max_size_bytes: int | None = None,
) -> str | None:
    """Return an error message, or None when the file is acceptable.

    ``allowed_types`` is a comma separated list of exact MIME types or
    ``type/*`` wildcards. Either constraint may be omitted.
    """
    if allowed_types:
        patterns = [p.strip() for p in allowed_types.split(",") if p.strip()]
        if patterns and not any(_type_matches(file.content_type, p) for p in patterns):
            return f"File type {file.content_type} is not allowed. Allowed types: {allowed_types}"

    if max_size_bytes is not None and file.size > max_size_bytes:
        max_mb = max_size_bytes / 1024 / 1024
        actual_mb = file.size / 1024 / 1024
        return f"File size {actual_mb:.1f}MB exceeds maximum {max_mb:.1f}MB"

    return None


class FileUploadClient:
    """Drives uploads through the API, the signer and object storage.

    ``http`` talks to the API; ``transfer`` performs the direct PUT to object
    storage and must not carry API credentials.
    """

    def __init__(
        self,
        http: httpx.Client | None = None,
        transfer: httpx.Client | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        upload_poll_interval_ms: int | None = None,
        upload_poll_max_attempts: int | None = None,
        thumbnail_poll_interval_ms: int | None = None,
        thumbnail_poll_max_attempts: int | None = None,
    ) -> None:
        self.http = http or httpx.Client(base_url=settings.api_base_url, timeout=30.0)
        self.transfer = transfer or httpx.Client(timeout=120.0)
        self.sleep = sleep
        if upload_poll_interval_ms is None:
            upload_poll_interval_ms = settings.upload_poll_interval_ms
        if upload_poll_max_attempts is None:
            upload_poll_max_attempts = settings.upload_poll_max_attempts
        if thumbnail_poll_interval_ms is None:
            thumbnail_poll_interval_ms = settings.thumbnail_poll_interval_ms
        if thumbnail_poll_max_attempts is None:
            thumbnail_poll_max_attempts = settings.thumbnail_poll_max_attempts
        if upload_poll_max_attempts < 1 or thumbnail_poll_max_attempts < 1:
            raise ValueError("Poll attempts must be at least 1")
        if upload_poll_interval_ms < 0 or thumbnail_poll_interval_ms < 0:
            raise ValueError("Poll intervals must not be negative")
        self.upload_poll_interval = upload_poll_interval_ms / 1000
        self.upload_poll_max_attempts = upload_poll_max_attempts
        self.thumbnail_poll_interval = thumbnail_poll_interval_ms / 1000
        self.thumbnail_poll_max_attempts = thumbnail_poll_max_attempts

    def upload_file(
        self,
        file: LocalFile,
        entity_type: str,
        entity_id: str,
        wait_for_thumbnails: bool = False,
        *,
        allowed_types: str | None = None,
        max_size_bytes: int | None = None,
    ) -> FileRead:
        error = validate_file(file, allowed_types, max_size_bytes)
        if error:
            raise UploadValidationError(error)

        request_id = self.request_upload_url(file, entity_type, entity_id)
        signed = self.wait_for_upload_url(request_id)
        self.put_object(signed.url, file)

        s3_key = signed.s3_key or original_key(entity_type, entity_id, signed.file_id, file.name)
        record = self.create_file_record(signed.file_id, file, entity_type, entity_id, s3_key)

        kind = ThumbnailKind.from_mime(file.content_type)
        if not wait_for_thumbnails or not kind.has_thumbnails:
            return record
        return self.wait_for_thumbnails(record.id)

    def request_upload_url(self, file: LocalFile, entity_type: str, entity_id: str) -> str:
        try:
            response = self.http.post(
                "/rpc/request_upload_url",
                json={
                    "p_entity_type": entity_type,
                    "p_entity_id": entity_id,
                    "p_file_name": file.name,
                    "p_file_type": file.content_type,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FileUploadClientError(f"Upload URL request failed: {exc}") from exc
        return str(response.json())

    def get_upload_status(self, request_id: str) -> UploadUrlStatus:
        try:
            response = self.http.get(
                "/rpc/get_upload_url", params={"p_request_id": request_id}
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FileUploadClientError(f"Upload URL status check failed: {exc}") from exc
        return UploadUrlStatus.model_validate(response.json())

    def wait_for_upload_url(self, request_id: str) -> UploadUrlStatus:
        """Poll the signing job; exactly ``attempts`` polls before timing out."""
        for _ in range(self.upload_poll_max_attempts):
            result = self.get_upload_status(request_id)
            if result.status == UploadRequestStatus.completed:
                if not result.url or not result.file_id:
                    raise SigningFailedError("Upload URL response is missing url or file id")
                return result
            if result.status == UploadRequestStatus.failed:
                raise SigningFailedError(result.error or "Failed to get upload URL")
            self.sleep(self.upload_poll_interval)
        raise SigningTimeoutError("Timeout waiting for upload URL")

    def put_object(self, presigned_url: str, file: LocalFile) -> None:
        try:
            response = self.transfer.put(
                presigned_url,
                content=file.data,
                headers={"Content-Type": file.content_type},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise UploadTransportError(f"Upload to storage failed: {exc}") from exc

    def create_file_record(
        self,
        file_id: UUID,
        file: LocalFile,
        entity_type: str,
        entity_id: str,
        s3_key: str,
    ) -> FileRead:
        try:
            response = self.http.post(
                "/files",
                json={
                    "id": str(file_id),
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "file_name": file.name,
                    "file_type": file.content_type,
                    "file_size": file.size,
                    "s3_original_key": s3_key,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("file_record_rejected file_id=%s orphaned_key=%s", file_id, s3_key)
            raise RecordCreationError(f"File record creation failed: {exc}") from exc
        return FileRead.model_validate(response.json())

    def get_file(self, file_id) -> FileRead | None:
        try:
            response = self.http.get(f"/files/{file_id}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FileUploadClientError(f"File lookup failed: {exc}") from exc
        return FileRead.model_validate(response.json())

    def delete_file(self, file_id) -> None:
        try:
            response = self.http.delete(f"/files/{file_id}")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FileUploadClientError(f"File deletion failed: {exc}") from exc

    def wait_for_thumbnails(self, file_id) -> FileRead:
        """Poll until thumbnails finish; bounded by ``thumbnail_poll_max_attempts``.

        On exhaustion the latest record is returned as-is, since the original
        upload is already usable.
        """
        # Give the worker a head start before the first poll
        self.sleep(self.thumbnail_poll_interval)
        attempt = 0
        while True:
            attempt += 1
            record = self.get_file(file_id)
            if record is None:
                raise FileUploadClientError(f"File {file_id} disappeared while waiting for thumbnails")
            if record.thumbnail_status in (
                ThumbnailStatus.completed,
                ThumbnailStatus.not_applicable,
            ):
                return record
            if record.thumbnail_status == ThumbnailStatus.failed:
                raise ThumbnailFailedError(
                    record.thumbnail_error or "Thumbnail generation failed", record
                )
            if attempt >= self.thumbnail_poll_max_attempts:
                break
            self.sleep(self.thumbnail_poll_interval)
        logger.warning(
            "thumbnail_wait_timeout file_id=%s status=%s",
            file_id,
            record.thumbnail_status.value,
        )
        return record
