from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)

UPLOAD_URLS_SIGNED = Counter(
    "upload_url_requests_total",
    "Upload URL requests processed by the signing worker",
    ["status"],
)
THUMBNAILS_PROCESSED = Counter(
    "thumbnails_processed_total",
    "Files processed by the thumbnail worker",
    ["kind", "status"],
)
THUMBNAIL_BACKLOG_ROWS = Counter(
    "thumbnail_backlog_rows_total",
    "Rows picked up by the thumbnail backlog scan",
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)
