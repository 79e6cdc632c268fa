from types import SimpleNamespace

import psycopg

from app.services.notifications import (
    FILE_UPLOADED_CHANNEL,
    UPLOAD_URL_REQUEST_CHANNEL,
    PostgresNotificationListener,
    PostgresNotificationPublisher,
    decode_payload,
    encode_payload,
)


class _FakeConnection:
    def __init__(self, notifies):
        self.executed = []
        self._notifies = notifies
        self.closed = False
        self.timeouts = []

    def execute(self, statement):
        self.executed.append(statement)

    def notifies(self, timeout=None):
        self.timeouts.append(timeout)
        yield from self._notifies

    def close(self):
        self.closed = True


def test_encode_payload_is_compact_json():
    assert encode_payload({"file_id": "abc", "n": 1}) == '{"file_id":"abc","n":1}'


def test_decode_payload_rejects_invalid_json():
    assert decode_payload(FILE_UPLOADED_CHANNEL, "{not json") is None
    assert decode_payload(FILE_UPLOADED_CHANNEL, '["a", "b"]') is None

    notification = decode_payload(FILE_UPLOADED_CHANNEL, '{"file_id": "abc"}')
    assert notification.channel == FILE_UPLOADED_CHANNEL
    assert notification.payload == {"file_id": "abc"}


def test_publisher_is_noop_outside_postgres(db_session):
    PostgresNotificationPublisher().publish(
        db_session, FILE_UPLOADED_CHANNEL, {"file_id": "abc"}
    )


def test_listener_subscribes_and_yields_decoded_notifications(monkeypatch):
    conn = _FakeConnection(
        [
            SimpleNamespace(channel=UPLOAD_URL_REQUEST_CHANNEL, payload='{"requestId": "r1"}'),
            SimpleNamespace(channel=UPLOAD_URL_REQUEST_CHANNEL, payload="garbage"),
            SimpleNamespace(channel=UPLOAD_URL_REQUEST_CHANNEL, payload='{"requestId": "r2"}'),
        ]
    )
    connect_calls = []

    def fake_connect(dsn, autocommit=False):
        connect_calls.append((dsn, autocommit))
        return conn

    monkeypatch.setattr(psycopg, "connect", fake_connect)
    listener = PostgresNotificationListener(
        "postgresql://u:p@db/civic", [UPLOAD_URL_REQUEST_CHANNEL]
    )

    listener.connect()
    received = list(listener.listen(timeout=0.5))
    listener.close()

    assert connect_calls == [("postgresql://u:p@db/civic", True)]
    assert len(conn.executed) == 2
    assert conn.executed[-1] == "UNLISTEN *"
    assert conn.timeouts == [0.5]
    assert [n.payload["requestId"] for n in received] == ["r1", "r2"]
    assert conn.closed is True
