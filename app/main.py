import logging

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.api.files import router as files_router
from app.api.files import rpc_router as upload_rpc_router
from app.logging import configure_logging
from app.observability import ObservabilityMiddleware
from app.services.object_storage import ensure_storage_bucket

app = FastAPI(title="Civic OS Files API")
logger = logging.getLogger(__name__)
configure_logging()
app.add_middleware(ObservabilityMiddleware)

app.include_router(upload_rpc_router)
app.include_router(files_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
def _ensure_bucket():
    try:
        ensure_storage_bucket()
    except Exception:
        logger.exception("Failed to ensure storage bucket during startup")
