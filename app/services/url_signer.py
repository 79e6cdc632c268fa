"""Presigned upload URL generation for pending upload requests."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any

from app.config import settings
from app.db import SessionLocal, session_scope
from app.metrics import UPLOAD_URLS_SIGNED, observe_job
from app.services.file_keys import original_key
from app.services.object_storage import StorageService
from app.services.stored_files import generate_file_id
from app.services.upload_requests import upload_requests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SigningRequest:
    request_id: uuid.UUID
    file_name: str
    file_type: str
    entity_type: str
    entity_id: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SigningRequest":
        try:
            return cls(
                request_id=uuid.UUID(str(payload["requestId"])),
                file_name=str(payload["fileName"]),
                file_type=str(payload["fileType"]),
                entity_type=str(payload["entityType"]),
                entity_id=str(payload["entityId"]),
            )
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Malformed upload URL request payload: {payload!r}") from exc


class UrlSigningService:
    """Turns one upload request into a presigned PUT URL, or a failed row.

    ``process_request`` never raises: every failure ends up as row state.
    """

    def __init__(
        self,
        storage: StorageService,
        session_factory=None,
        expires_in: int | None = None,
    ) -> None:
        self.storage = storage
        self.session_factory = session_factory or SessionLocal
        self.expires_in = expires_in or settings.upload_url_expires_seconds

    def process_payload(self, payload: dict[str, Any]) -> None:
        try:
            request = SigningRequest.from_payload(payload)
        except ValueError as exc:
            logger.warning("upload_url_request_dropped error=%s", exc)
            return
        self.process_request(request)

    def process_request(self, request: SigningRequest) -> None:
        start = time.monotonic()
        logger.info(
            "upload_url_request_processing request_id=%s file_name=%s",
            request.request_id,
            request.file_name,
        )
        try:
            with session_scope(self.session_factory) as db:
                if not upload_requests.claim(db, request.request_id):
                    logger.info(
                        "upload_url_request_skipped request_id=%s reason=not_pending",
                        request.request_id,
                    )
                    return
                file_id = generate_file_id(db)
                s3_key = original_key(
                    request.entity_type, request.entity_id, file_id, request.file_name
                )
                presigned_url = self.storage.presigned_put_url(
                    s3_key, request.file_type, self.expires_in
                )
                upload_requests.complete(
                    db,
                    request.request_id,
                    presigned_url=presigned_url,
                    s3_key=s3_key,
                    file_id=file_id,
                )
        except Exception as exc:
            logger.exception("upload_url_request_failed request_id=%s", request.request_id)
            self._record_failure(request.request_id, str(exc) or exc.__class__.__name__)
            UPLOAD_URLS_SIGNED.labels(status="failed").inc()
            observe_job("sign_upload_url", "failed", time.monotonic() - start)
            return

        UPLOAD_URLS_SIGNED.labels(status="completed").inc()
        observe_job("sign_upload_url", "completed", time.monotonic() - start)
        logger.info(
            "upload_url_generated request_id=%s file_id=%s key=%s",
            request.request_id,
            file_id,
            s3_key,
        )

    def _record_failure(self, request_id: uuid.UUID, error_message: str) -> None:
        # Best effort: a failure here is only logged
        try:
            with session_scope(self.session_factory) as db:
                upload_requests.fail(db, request_id, error_message)
        except Exception:
            logger.exception("upload_url_failure_not_recorded request_id=%s", request_id)
