"""S3-compatible object storage gateway."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Protocol

from app.config import settings

logger = logging.getLogger(__name__)

THUMBNAIL_CACHE_CONTROL = "public, max-age=31536000"


class ObjectStorageError(Exception):
    """Generic object storage failure."""


class ObjectNotFoundError(ObjectStorageError):
    """Raised when object is missing."""


class StorageService(Protocol):
    """Storage provider interface."""

    def upload(
        self,
        key: str,
        data: bytes,
        content_type: str | None,
        cache_control: str | None = None,
    ) -> None: ...
    def download(self, key: str) -> bytes: ...
    def exists(self, key: str) -> bool: ...
    def delete(self, key: str) -> None: ...
    def presigned_put_url(self, key: str, content_type: str, expires_in: int) -> str: ...


def build_s3_client(endpoint_url: str | None, access_key: str | None, secret_key: str | None, region: str):
    try:
        import boto3
        from botocore.client import Config
    except ImportError as exc:
        raise ObjectStorageError("boto3 is required for S3 storage") from exc
    # MinIO and most self-hosted stores need path-style addressing
    s3_options = {"addressing_style": "path"} if endpoint_url else {}
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key,
        region_name=region,
        config=Config(signature_version="s3v4", s3=s3_options),
    )


class S3StorageService:
    """S3/MinIO/R2-backed storage provider."""

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: str | None,
        access_key: str | None,
        secret_key: str | None,
        region: str,
        client: Any | None = None,
    ) -> None:
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url
        self.region = region
        if client is not None:
            self.client = client
            return
        self.client = build_s3_client(endpoint_url, access_key, secret_key, region)

    @staticmethod
    def _error_code(exc: Exception) -> str:
        response = getattr(exc, "response", None)
        if isinstance(response, dict):
            err = response.get("Error", {})
            if isinstance(err, dict):
                return str(err.get("Code", ""))
        return ""

    def ensure_bucket(self) -> None:
        """Create bucket if missing (safe to call repeatedly)."""
        try:
            self.client.head_bucket(Bucket=self.bucket_name)
            return
        except Exception as exc:
            code = self._error_code(exc)
            if code not in {"404", "NoSuchBucket"}:
                raise ObjectStorageError("Unable to check storage bucket") from exc

        kwargs: dict = {"Bucket": self.bucket_name}
        if self.region and self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        self.client.create_bucket(**kwargs)
        logger.info("Created storage bucket: %s", self.bucket_name)

    def upload(
        self,
        key: str,
        data: bytes,
        content_type: str | None,
        cache_control: str | None = None,
    ) -> None:
        kwargs: dict = {
            "Bucket": self.bucket_name,
            "Key": key,
            "Body": data,
        }
        if content_type:
            kwargs["ContentType"] = content_type
        if cache_control:
            kwargs["CacheControl"] = cache_control
        try:
            self.client.put_object(**kwargs)
        except Exception as exc:
            raise ObjectStorageError(f"Failed to upload object {key}") from exc

    def download(self, key: str) -> bytes:
        try:
            obj = self.client.get_object(Bucket=self.bucket_name, Key=key)
        except Exception as exc:
            code = self._error_code(exc)
            if code in {"404", "NoSuchKey"}:
                raise ObjectNotFoundError(key) from exc
            raise ObjectStorageError(f"Failed to download object {key}") from exc
        return obj["Body"].read()

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except Exception as exc:
            code = self._error_code(exc)
            if code in {"404", "NoSuchKey"}:
                return False
            raise ObjectStorageError("Failed to check object") from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket_name, Key=key)
        except Exception as exc:
            raise ObjectStorageError(f"Failed to delete object {key}") from exc

    def presigned_put_url(self, key: str, content_type: str, expires_in: int) -> str:
        """Time-limited PUT URL; the upload must send the same Content-Type."""
        try:
            return self.client.generate_presigned_url(
                ClientMethod="put_object",
                Params={
                    "Bucket": self.bucket_name,
                    "Key": key,
                    "ContentType": content_type,
                },
                ExpiresIn=expires_in,
                HttpMethod="PUT",
            )
        except Exception as exc:
            raise ObjectStorageError(f"Failed to presign upload for {key}") from exc


@lru_cache(maxsize=1)
def get_s3_storage() -> S3StorageService:
    """Storage bound to the internal endpoint, for worker and API traffic."""
    return S3StorageService(
        bucket_name=settings.s3_bucket_name,
        endpoint_url=settings.s3_endpoint_url,
        access_key=settings.s3_access_key,
        secret_key=settings.s3_secret_key,
        region=settings.s3_region,
    )


@lru_cache(maxsize=1)
def get_presign_storage() -> S3StorageService:
    """Storage bound to the public endpoint so presigned URLs resolve for browsers."""
    return S3StorageService(
        bucket_name=settings.s3_bucket_name,
        endpoint_url=settings.presign_endpoint_url,
        access_key=settings.s3_access_key,
        secret_key=settings.s3_secret_key,
        region=settings.s3_region,
    )


def ensure_storage_bucket() -> None:
    """Startup hook helper to guarantee bucket availability."""
    get_s3_storage().ensure_bucket()
