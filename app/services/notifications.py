"""Named notification channels between the API and the workers.

Publishing goes through ``pg_notify`` inside the caller's transaction, so a
notification is only delivered once the row it describes is committed.
Listening uses a dedicated autocommit psycopg connection.

Delivery is a latency optimisation only: the workers' backlog scans recover
anything a lost notification would have carried.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import text
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

UPLOAD_URL_REQUEST_CHANNEL = "upload_url_request"
FILE_UPLOADED_CHANNEL = "file_uploaded"


@dataclass(frozen=True)
class Notification:
    channel: str
    payload: dict[str, Any]


class NotificationPublisher(Protocol):
    def publish(self, db: Session, channel: str, payload: dict[str, Any]) -> None: ...


class NotificationListener(Protocol):
    def connect(self) -> None: ...
    def listen(self, timeout: float) -> Iterator[Notification]: ...
    def close(self) -> None: ...


def encode_payload(payload: dict[str, Any]) -> str:
    return json.dumps(payload, default=str, separators=(",", ":"))


def decode_payload(channel: str, raw: str) -> Notification | None:
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("notification_payload_invalid channel=%s payload=%r", channel, raw)
        return None
    if not isinstance(payload, dict):
        logger.warning("notification_payload_not_object channel=%s payload=%r", channel, raw)
        return None
    return Notification(channel=channel, payload=payload)


class PostgresNotificationPublisher:
    """Queue a NOTIFY in the session's current transaction."""

    def publish(self, db: Session, channel: str, payload: dict[str, Any]) -> None:
        if db.get_bind().dialect.name != "postgresql":
            logger.debug("notification_skipped channel=%s reason=dialect", channel)
            return
        db.execute(
            text("SELECT pg_notify(:channel, :payload)"),
            {"channel": channel, "payload": encode_payload(payload)},
        )


class PostgresNotificationListener:
    """LISTEN on one or more channels over a raw psycopg connection."""

    def __init__(self, dsn: str, channels: Iterable[str]) -> None:
        self.dsn = dsn
        self.channels = tuple(channels)
        self._conn = None

    def connect(self) -> None:
        import psycopg
        from psycopg import sql

        self._conn = psycopg.connect(self.dsn, autocommit=True)
        for channel in self.channels:
            self._conn.execute(sql.SQL("LISTEN {}").format(sql.Identifier(channel)))
            logger.info("notification_listening channel=%s", channel)

    def listen(self, timeout: float) -> Iterator[Notification]:
        """Yield notifications that arrive within ``timeout`` seconds."""
        if self._conn is None:
            raise RuntimeError("Listener is not connected")
        for notify in self._conn.notifies(timeout=timeout):
            notification = decode_payload(notify.channel, notify.payload)
            if notification is not None:
                yield notification

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.execute("UNLISTEN *")
        except Exception as exc:
            logger.warning("notification_unlisten_failed error=%s", exc)
        finally:
            self._conn.close()
            self._conn = None


publisher: NotificationPublisher = PostgresNotificationPublisher()


def publish(db: Session, channel: str, payload: dict[str, Any]) -> None:
    publisher.publish(db, channel, payload)
