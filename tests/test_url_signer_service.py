import uuid

import pytest

from app.models.file_storage import FileUploadRequest, UploadRequestStatus
from app.services import notifications
from app.services.upload_requests import notification_payload, upload_requests
from app.services.url_signer import SigningRequest, UrlSigningService


@pytest.fixture()
def signer(storage, session_factory):
    return UrlSigningService(storage, session_factory=session_factory, expires_in=3600)


def _request(db_session, file_name="Site Photo.JPG", file_type="image/jpeg"):
    return upload_requests.request_upload_url(
        db_session,
        entity_type="issue",
        entity_id="42",
        file_name=file_name,
        file_type=file_type,
    )


def _reload(db_session, request_id) -> FileUploadRequest:
    db_session.expire_all()
    return db_session.get(FileUploadRequest, request_id)


def test_signs_pending_request(db_session, signer, fake_s3, published):
    request = _request(db_session)
    payload = published.on(notifications.UPLOAD_URL_REQUEST_CHANNEL)[0]

    signer.process_payload(payload)

    row = _reload(db_session, request.id)
    assert row.status == UploadRequestStatus.completed
    assert row.file_id is not None
    assert row.file_id.version == 7
    assert row.s3_key == f"issue/42/{row.file_id}/original.jpg"
    assert row.presigned_url.startswith(f"http://minio:9000/civic-os-files/{row.s3_key}")
    assert row.error_message is None
    call = fake_s3.presign_calls[0]
    assert call["Params"]["ContentType"] == "image/jpeg"
    assert call["ExpiresIn"] == 3600


def test_presign_failure_marks_request_failed(db_session, signer, fake_s3):
    request = _request(db_session)
    fake_s3.fail_operations.add("generate_presigned_url")

    signer.process_request(SigningRequest.from_payload(notification_payload(request)))

    row = _reload(db_session, request.id)
    assert row.status == UploadRequestStatus.failed
    assert "Failed to presign upload" in row.error_message
    assert row.presigned_url is None


def test_already_handled_request_is_skipped(db_session, signer, fake_s3):
    request = _request(db_session)
    payload = notification_payload(request)
    signer.process_payload(payload)
    first = _reload(db_session, request.id)
    first_url, first_file_id = first.presigned_url, first.file_id

    signer.process_payload(payload)

    row = _reload(db_session, request.id)
    assert row.presigned_url == first_url
    assert row.file_id == first_file_id
    assert len(fake_s3.presign_calls) == 1


def test_unknown_request_is_ignored(signer, fake_s3):
    signer.process_request(
        SigningRequest(
            request_id=uuid.uuid4(),
            file_name="a.png",
            file_type="image/png",
            entity_type="issue",
            entity_id="42",
        )
    )

    assert fake_s3.presign_calls == []


def test_malformed_payload_is_dropped(signer, fake_s3):
    signer.process_payload({"requestId": "not-a-uuid", "fileName": "a.png"})

    assert fake_s3.presign_calls == []


def test_signing_request_from_payload_requires_all_fields():
    with pytest.raises(ValueError, match="Malformed upload URL request payload"):
        SigningRequest.from_payload({"requestId": str(uuid.uuid4())})
