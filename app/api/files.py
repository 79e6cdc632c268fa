"""File upload endpoints: upload URL jobs and file records."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.schemas.files import FileCreate, FileRead, UploadUrlRequest, UploadUrlStatus
from app.services.object_storage import StorageService, get_s3_storage
from app.services.stored_files import stored_files
from app.services.upload_requests import upload_requests

rpc_router = APIRouter(prefix="/rpc", tags=["uploads"])
router = APIRouter(prefix="/files", tags=["files"])


@rpc_router.post("/request_upload_url", status_code=status.HTTP_200_OK)
def request_upload_url(payload: UploadUrlRequest, db: Session = Depends(get_db)) -> str:
    request = upload_requests.request_upload_url(
        db,
        entity_type=payload.p_entity_type,
        entity_id=payload.p_entity_id,
        file_name=payload.p_file_name,
        file_type=payload.p_file_type,
    )
    return str(request.id)


@rpc_router.get("/get_upload_url", response_model=UploadUrlStatus)
def get_upload_url(p_request_id: str = Query(...), db: Session = Depends(get_db)):
    request = upload_requests.get(db, p_request_id)
    return UploadUrlStatus(
        status=request.status,
        url=request.presigned_url,
        file_id=request.file_id,
        s3_key=request.s3_key,
        error=request.error_message,
    )


@router.post("", response_model=FileRead, status_code=status.HTTP_201_CREATED)
def create_file(payload: FileCreate, db: Session = Depends(get_db)):
    return stored_files.create(db, payload)


@router.get("", response_model=list[FileRead])
def list_files(
    entity_type: str = Query(...),
    entity_id: str = Query(...),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return stored_files.list_for_entity(db, entity_type, entity_id, limit, offset)


@router.get("/{file_id}", response_model=FileRead)
def get_file(file_id: str, db: Session = Depends(get_db)):
    return stored_files.get(db, file_id)


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_file(
    file_id: str,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_s3_storage),
):
    stored_files.delete(db, file_id, storage)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
