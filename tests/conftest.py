import os
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base, get_db
from app.main import app
from app.models import file_storage  # noqa: F401
from app.services import notifications
from app.services.object_storage import S3StorageService, get_s3_storage

BUCKET = "civic-os-files"


class ClientError(Exception):
    def __init__(self, code: str):
        super().__init__(code)
        self.response = {"Error": {"Code": code}}


class FakeBody:
    def __init__(self, data: bytes):
        self._data = data

    def read(self) -> bytes:
        return self._data


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.cache_control: dict[str, str] = {}
        self.presign_calls: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.bucket_exists = True
        self.created_bucket = False
        self.fail_operations: set[str] = set()
        self.fail_keys: set[str] = set()

    def _maybe_fail(self, operation: str):
        if operation in self.fail_operations:
            raise ClientError("InternalError")

    def head_bucket(self, Bucket: str):
        if self.bucket_exists:
            return {}
        raise ClientError("404")

    def create_bucket(self, **kwargs):
        self.created_bucket = True
        self.bucket_exists = True

    def put_object(
        self,
        Bucket: str,
        Key: str,
        Body: bytes,
        ContentType: str | None = None,
        CacheControl: str | None = None,
    ):
        self._maybe_fail("put_object")
        if Key in self.fail_keys:
            raise ClientError("SlowDown")
        self.objects[Key] = Body
        if ContentType:
            self.content_types[Key] = ContentType
        if CacheControl:
            self.cache_control[Key] = CacheControl

    def get_object(self, Bucket: str, Key: str):
        self._maybe_fail("get_object")
        if Key not in self.objects:
            raise ClientError("NoSuchKey")
        return {"Body": FakeBody(self.objects[Key])}

    def head_object(self, Bucket: str, Key: str):
        if Key not in self.objects:
            raise ClientError("404")
        return {}

    def delete_object(self, Bucket: str, Key: str):
        self._maybe_fail("delete_object")
        self.deleted.append(Key)
        self.objects.pop(Key, None)

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn, HttpMethod):
        self._maybe_fail("generate_presigned_url")
        self.presign_calls.append(
            {
                "ClientMethod": ClientMethod,
                "Params": Params,
                "ExpiresIn": ExpiresIn,
                "HttpMethod": HttpMethod,
            }
        )
        return f"http://minio:9000/{Params['Bucket']}/{Params['Key']}?X-Amz-Signature=test"


class RecordingPublisher:
    def __init__(self):
        self.published: list[notifications.Notification] = []
        self.pending: list[notifications.Notification] = []

    def publish(self, db, channel: str, payload: dict[str, Any]) -> None:
        notification = notifications.Notification(channel=channel, payload=payload)
        self.published.append(notification)
        self.pending.append(notification)

    def on(self, channel: str) -> list[dict[str, Any]]:
        return [n.payload for n in self.published if n.channel == channel]


@pytest.fixture()
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        engine = create_engine(database_url)
        Base.metadata.drop_all(engine)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def published(monkeypatch):
    recorder = RecordingPublisher()
    monkeypatch.setattr(notifications, "publisher", recorder)
    return recorder


@pytest.fixture()
def fake_s3():
    return FakeS3Client()


@pytest.fixture()
def storage(fake_s3):
    return S3StorageService(
        BUCKET, "http://minio:9000", "access", "secret", "us-east-1", client=fake_s3
    )


@pytest.fixture()
def api_client(session_factory, storage):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_s3_storage] = lambda: storage
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
