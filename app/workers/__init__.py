"""
File Pipeline Workers

Long-running processes woken by database notifications: the upload URL
signer and the thumbnail generator.
"""
from app.workers.supervisor import NotificationWorker, SigningWorker, ThumbnailWorker

__all__ = ["NotificationWorker", "SigningWorker", "ThumbnailWorker"]
