from app.tasks.files import cleanup_upload_requests, sweep_thumbnail_backlog

__all__ = [
    "cleanup_upload_requests",
    "sweep_thumbnail_backlog",
]
