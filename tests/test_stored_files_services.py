import uuid
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import HTTPException

from app.models.file_storage import StoredFile, ThumbnailStatus
from app.schemas.files import FileCreate
from app.services import notifications
from app.services.file_keys import original_key
from app.services.stored_files import generate_file_id, stored_files


def _payload(file_type="image/png", file_name="photo.png", **overrides) -> FileCreate:
    values = {
        "id": uuid.uuid4(),
        "entity_type": "issue",
        "entity_id": "42",
        "file_name": file_name,
        "file_type": file_type,
        "file_size": 1024,
    }
    values.update(overrides)
    values.setdefault(
        "s3_original_key",
        original_key(values["entity_type"], values["entity_id"], values["id"], file_name),
    )
    return FileCreate(**values)


def _row(db_session, status: ThumbnailStatus, created_at: datetime, updated_at: datetime):
    file_id = uuid.uuid4()
    row = StoredFile(
        id=file_id,
        entity_type="issue",
        entity_id="42",
        file_name="photo.png",
        file_type="image/png",
        file_size=10,
        s3_key_prefix=f"issue/42/{file_id}",
        s3_original_key=f"issue/42/{file_id}/original.png",
        thumbnail_status=status,
        created_at=created_at,
        updated_at=updated_at,
    )
    db_session.add(row)
    db_session.commit()
    return row


def test_create_image_record_is_pending_and_notifies(db_session, published):
    payload = _payload()

    record = stored_files.create(db_session, payload)

    assert record.thumbnail_status == ThumbnailStatus.pending
    assert record.s3_key_prefix == f"issue/42/{payload.id}"
    assert published.on(notifications.FILE_UPLOADED_CHANNEL) == [
        {
            "file_id": str(payload.id),
            "s3_key": payload.s3_original_key,
            "file_type": "image/png",
            "entity_type": "issue",
            "entity_id": "42",
        }
    ]


def test_create_pdf_record_is_pending(db_session):
    record = stored_files.create(
        db_session, _payload(file_type="application/pdf", file_name="permit.pdf")
    )

    assert record.thumbnail_status == ThumbnailStatus.pending


def test_create_other_record_is_not_applicable_without_notification(db_session, published):
    record = stored_files.create(
        db_session, _payload(file_type="text/plain", file_name="notes.txt")
    )

    assert record.thumbnail_status == ThumbnailStatus.not_applicable
    assert published.on(notifications.FILE_UPLOADED_CHANNEL) == []


def test_create_duplicate_id_conflicts(db_session):
    payload = _payload()
    stored_files.create(db_session, payload)

    with pytest.raises(HTTPException) as exc_info:
        stored_files.create(db_session, payload)
    assert exc_info.value.status_code == 409


def test_create_rejects_key_of_another_file(db_session, storage, fake_s3):
    other = stored_files.create(
        db_session, _payload(file_type="text/plain", file_name="notes.txt")
    )
    fake_s3.objects[other.s3_original_key] = b"notes"

    with pytest.raises(HTTPException) as exc_info:
        stored_files.create(
            db_session,
            _payload(
                file_type="text/plain",
                file_name="notes.txt",
                s3_original_key=other.s3_original_key,
            ),
        )

    assert exc_info.value.status_code == 422
    assert db_session.query(StoredFile).count() == 1
    assert fake_s3.objects[other.s3_original_key] == b"notes"


@pytest.mark.parametrize(
    "key",
    [
        "issue/42/{id}/photo.png",
        "issue/42/{id}/original.jpg",
        "issue/43/{id}/original.png",
        "elsewhere/{id}/original.png",
    ],
)
def test_create_rejects_key_outside_layout(db_session, published, key):
    file_id = uuid.uuid4()

    with pytest.raises(HTTPException) as exc_info:
        stored_files.create(
            db_session, _payload(id=file_id, s3_original_key=key.format(id=file_id))
        )

    assert exc_info.value.status_code == 422
    assert published.on(notifications.FILE_UPLOADED_CHANNEL) == []


def test_create_accepts_lowercased_extension(db_session):
    file_id = uuid.uuid4()

    record = stored_files.create(
        db_session,
        _payload(
            id=file_id,
            file_name="Site.Photo.PNG",
            s3_original_key=f"issue/42/{file_id}/original.png",
        ),
    )

    assert record.s3_original_key == f"issue/42/{file_id}/original.png"


def test_get_missing_is_404(db_session):
    with pytest.raises(HTTPException) as exc_info:
        stored_files.get(db_session, str(uuid.uuid4()))
    assert exc_info.value.status_code == 404


def test_list_for_entity_filters_by_entity(db_session):
    first = stored_files.create(db_session, _payload())
    stored_files.create(db_session, _payload(entity_id="43"))

    rows = stored_files.list_for_entity(db_session, "issue", "42")

    assert [row.id for row in rows] == [first.id]


def test_generate_file_id_is_version_7(db_session):
    assert generate_file_id(db_session).version == 7


def test_claim_for_thumbnails_only_from_pending_or_failed(db_session):
    now = datetime.now(UTC)
    pending = _row(db_session, ThumbnailStatus.pending, now, now)
    failed = _row(db_session, ThumbnailStatus.failed, now, now)
    completed = _row(db_session, ThumbnailStatus.completed, now, now)

    assert stored_files.claim_for_thumbnails(db_session, pending.id) is True
    assert stored_files.claim_for_thumbnails(db_session, pending.id) is False
    assert stored_files.claim_for_thumbnails(db_session, failed.id) is True
    assert stored_files.claim_for_thumbnails(db_session, completed.id) is False


def test_complete_image_sets_all_keys(db_session):
    record = stored_files.create(db_session, _payload())

    stored_files.complete_image(
        db_session, record.id, small_key="s", medium_key="m", large_key="l"
    )

    db_session.expire_all()
    row = stored_files.get(db_session, record.id)
    assert row.thumbnail_status == ThumbnailStatus.completed
    assert row.thumbnail_keys() == ["s", "m", "l"]


def test_complete_pdf_sets_medium_key_only(db_session):
    record = stored_files.create(
        db_session, _payload(file_type="application/pdf", file_name="permit.pdf")
    )

    stored_files.complete_pdf(db_session, record.id, medium_key="m")

    db_session.expire_all()
    row = stored_files.get(db_session, record.id)
    assert row.thumbnail_status == ThumbnailStatus.completed
    assert row.s3_thumbnail_small_key is None
    assert row.s3_thumbnail_medium_key == "m"
    assert row.s3_thumbnail_large_key is None


def test_mark_failed_records_error(db_session):
    record = stored_files.create(db_session, _payload())

    stored_files.mark_failed(db_session, record.id, "cannot identify image file")

    db_session.expire_all()
    row = stored_files.get(db_session, record.id)
    assert row.thumbnail_status == ThumbnailStatus.failed
    assert row.thumbnail_error == "cannot identify image file"


def test_thumbnail_backlog_selects_pending_and_cooled_down_failed(db_session):
    now = datetime.now(UTC)
    old = now - timedelta(hours=2)
    recent = now - timedelta(minutes=10)
    pending = _row(db_session, ThumbnailStatus.pending, old, old)
    failed_old = _row(db_session, ThumbnailStatus.failed, old, old)
    _row(db_session, ThumbnailStatus.failed, old, recent)
    _row(db_session, ThumbnailStatus.processing, old, old)
    _row(db_session, ThumbnailStatus.completed, old, old)
    _row(db_session, ThumbnailStatus.not_applicable, old, old)

    rows = stored_files.thumbnail_backlog(db_session, limit=100, cooldown_seconds=3600, now=now)

    assert {row.id for row in rows} == {pending.id, failed_old.id}


def test_thumbnail_backlog_is_oldest_first_and_capped(db_session):
    now = datetime.now(UTC)
    rows = [
        _row(db_session, ThumbnailStatus.pending, now - timedelta(minutes=m), now)
        for m in (5, 30, 10, 20)
    ]

    backlog = stored_files.thumbnail_backlog(db_session, limit=3, cooldown_seconds=3600, now=now)

    assert [row.id for row in backlog] == [rows[1].id, rows[3].id, rows[2].id]


def test_delete_removes_row_and_objects(db_session, storage, fake_s3):
    record = stored_files.create(db_session, _payload())
    fake_s3.objects[record.s3_original_key] = b"original"
    stored_files.complete_image(
        db_session, record.id, small_key="s", medium_key="m", large_key="l"
    )
    for key in ("s", "m", "l"):
        fake_s3.objects[key] = b"thumb"

    file_id = record.id

    stored_files.delete(db_session, file_id, storage)

    assert fake_s3.objects == {}
    db_session.expire_all()
    assert db_session.get(StoredFile, file_id) is None


def test_delete_survives_storage_failure(db_session, storage, fake_s3):
    record = stored_files.create(db_session, _payload())
    file_id = record.id
    fake_s3.fail_operations.add("delete_object")

    stored_files.delete(db_session, file_id, storage)

    assert db_session.get(StoredFile, file_id) is None
