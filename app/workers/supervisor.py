"""
Notification-driven worker lifecycle.

A worker owns one notification listener and one service. ``start()`` connects
and subscribes before any startup work runs, so notifications that arrive
during a backlog scan queue on the connection instead of being lost.
"""
import logging
import threading

from app.config import settings
from app.db import libpq_dsn
from app.services.notifications import (
    FILE_UPLOADED_CHANNEL,
    UPLOAD_URL_REQUEST_CHANNEL,
    Notification,
    NotificationListener,
    PostgresNotificationListener,
)
from app.services.object_storage import get_presign_storage, get_s3_storage
from app.services.thumbnails import ThumbnailService
from app.services.url_signer import UrlSigningService

logger = logging.getLogger(__name__)


class NotificationWorker:
    """Base supervisor: connect, subscribe, startup hook, dispatch until stopped."""

    name = "worker"

    def __init__(
        self,
        listener: NotificationListener,
        poll_timeout: float | None = None,
    ):
        self.listener = listener
        self.poll_timeout = poll_timeout or settings.listen_poll_timeout_seconds
        self._stop_event = threading.Event()
        self._started = False
        self.processed_count = 0

    @property
    def is_running(self) -> bool:
        return self._started and not self._stop_event.is_set()

    def start(self):
        """Connect and subscribe, then run startup work."""
        if self._started:
            return
        self.listener.connect()
        self._started = True
        logger.info(f"{self.name} started")
        self.on_start()

    def on_start(self):
        pass

    def handle(self, notification: Notification):
        raise NotImplementedError

    def run(self):
        """Dispatch notifications until ``stop()`` is called."""
        try:
            self.start()
            while not self._stop_event.is_set():
                for notification in self.listener.listen(self.poll_timeout):
                    self._dispatch(notification)
                    if self._stop_event.is_set():
                        break
        finally:
            self.listener.close()
            self._started = False
            logger.info(
                f"{self.name} stopped after {self.processed_count} notifications"
            )

    def stop(self):
        self._stop_event.set()

    def _dispatch(self, notification: Notification):
        # The services record their own failures; this only guards the loop
        try:
            self.handle(notification)
        except Exception:
            logger.exception(
                f"{self.name} failed to handle notification on {notification.channel}"
            )
        self.processed_count += 1


class SigningWorker(NotificationWorker):
    name = "url-signer"

    def __init__(self, service: UrlSigningService, listener: NotificationListener, **kwargs):
        super().__init__(listener, **kwargs)
        self.service = service

    def handle(self, notification: Notification):
        self.service.process_payload(notification.payload)


class ThumbnailWorker(NotificationWorker):
    name = "thumbnail-worker"

    def __init__(self, service: ThumbnailService, listener: NotificationListener, **kwargs):
        super().__init__(listener, **kwargs)
        self.service = service

    def on_start(self):
        count = self.service.process_backlog()
        logger.info(f"{self.name} backlog processed: {count} files")

    def handle(self, notification: Notification):
        self.service.process_payload(notification.payload)


def build_signing_worker() -> SigningWorker:
    settings.validate_s3_config()
    return SigningWorker(
        UrlSigningService(storage=get_presign_storage()),
        PostgresNotificationListener(libpq_dsn(), [UPLOAD_URL_REQUEST_CHANNEL]),
    )


def build_thumbnail_worker() -> ThumbnailWorker:
    settings.validate_s3_config()
    return ThumbnailWorker(
        ThumbnailService(storage=get_s3_storage()),
        PostgresNotificationListener(libpq_dsn(), [FILE_UPLOADED_CHANNEL]),
    )


WORKER_FACTORIES = {
    "signer": build_signing_worker,
    "thumbnails": build_thumbnail_worker,
}
