"""Thumbnail generation for uploaded images and PDFs.

Images get three centre-cropped square renditions; PDFs get a single medium
preview of page one. Everything else is marked ``not_applicable``. Each file
is one unit of work: whatever goes wrong is written back as ``failed`` on that
row and the worker moves on.
"""

from __future__ import annotations

import io
import logging
import subprocess
import tempfile
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from PIL import Image, ImageOps

from app.config import settings
from app.db import SessionLocal, session_scope
from app.metrics import THUMBNAIL_BACKLOG_ROWS, THUMBNAILS_PROCESSED, observe_job
from app.models.file_storage import StoredFile
from app.services.file_keys import (
    IMAGE_RENDITIONS,
    PDF_RENDITION,
    RenditionSpec,
    ThumbnailKind,
    thumbnail_key,
)
from app.services.object_storage import THUMBNAIL_CACHE_CONTROL, StorageService
from app.services.stored_files import stored_files

logger = logging.getLogger(__name__)

WHITE = (255, 255, 255)


class RasterizationError(Exception):
    """PDF page could not be rendered to an image."""


class PdfRasterizer(Protocol):
    def rasterize_first_page(self, pdf_path: Path, target_width: int) -> Path: ...


class PdftoppmRasterizer:
    """Renders page one of a PDF to PNG with poppler's ``pdftoppm``."""

    def __init__(self, binary: str | None = None, timeout: int | None = None) -> None:
        self.binary = binary or settings.pdftoppm_path
        self.timeout = timeout or settings.pdf_raster_timeout_seconds

    def build_command(self, pdf_path: Path, target_width: int, output_prefix: Path) -> list[str]:
        return [
            self.binary,
            "-png",
            "-f",
            "1",
            "-l",
            "1",
            "-scale-to",
            str(target_width),
            str(pdf_path),
            str(output_prefix),
        ]

    def rasterize_first_page(self, pdf_path: Path, target_width: int) -> Path:
        output_prefix = pdf_path.with_name(f"{pdf_path.stem}-page")
        try:
            result = subprocess.run(
                self.build_command(pdf_path, target_width, output_prefix),
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise RasterizationError(f"pdftoppm could not run: {exc}") from exc
        if result.returncode != 0:
            detail = (result.stderr or "").strip() or f"exit code {result.returncode}"
            raise RasterizationError(f"pdftoppm failed: {detail}")

        expected = Path(f"{output_prefix}-1.png")
        if expected.exists():
            return expected
        # pdftoppm zero-pads page numbers on documents with 10+ pages
        padded = sorted(output_prefix.parent.glob(f"{output_prefix.name}-*.png"))
        if padded:
            return padded[0]
        raise RasterizationError("PDF conversion failed - output file not found")


@dataclass(frozen=True)
class ThumbnailJob:
    file_id: uuid.UUID
    s3_key: str
    file_type: str
    entity_type: str | None = None
    entity_id: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ThumbnailJob":
        try:
            return cls(
                file_id=uuid.UUID(str(payload["file_id"])),
                s3_key=str(payload["s3_key"]),
                file_type=str(payload["file_type"]),
                entity_type=payload.get("entity_type"),
                entity_id=payload.get("entity_id"),
            )
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Malformed file uploaded payload: {payload!r}") from exc

    @classmethod
    def from_record(cls, record: StoredFile) -> "ThumbnailJob":
        return cls(
            file_id=record.id,
            s3_key=record.s3_original_key,
            file_type=record.file_type,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
        )


def load_image(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def flatten_on_white(image: Image.Image) -> Image.Image:
    """Composite any transparency onto white; JPEG has no alpha channel."""
    has_alpha = image.mode in ("RGBA", "LA", "PA") or (
        image.mode == "P" and "transparency" in image.info
    )
    if not has_alpha:
        return image.convert("RGB")
    rgba = image.convert("RGBA")
    background = Image.new("RGB", rgba.size, WHITE)
    background.paste(rgba, mask=rgba.getchannel("A"))
    return background


def encode_jpeg(image: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, progressive=True)
    return buffer.getvalue()


def render_cover(image: Image.Image, spec: RenditionSpec) -> bytes:
    """Centre-cropped resize that fills the whole target box."""
    fitted = ImageOps.fit(
        image,
        (spec.width, spec.height),
        method=Image.Resampling.LANCZOS,
        centering=(0.5, 0.5),
    )
    return encode_jpeg(flatten_on_white(fitted), spec.quality)


def render_inside(image: Image.Image, spec: RenditionSpec) -> bytes:
    """Aspect-preserving resize within the target box, never enlarging."""
    fitted = image.copy()
    fitted.thumbnail((spec.width, spec.height), Image.Resampling.LANCZOS)
    return encode_jpeg(flatten_on_white(fitted), spec.quality)


class ThumbnailService:
    def __init__(
        self,
        storage: StorageService,
        rasterizer: PdfRasterizer | None = None,
        session_factory=None,
    ) -> None:
        self.storage = storage
        self.rasterizer = rasterizer or PdftoppmRasterizer()
        self.session_factory = session_factory or SessionLocal

    def process_payload(self, payload: dict[str, Any]) -> None:
        try:
            job = ThumbnailJob.from_payload(payload)
        except ValueError as exc:
            logger.warning("thumbnail_job_dropped error=%s", exc)
            return
        self.process_file(job)

    def process_backlog(
        self, limit: int | None = None, cooldown_seconds: int | None = None
    ) -> int:
        """Drive stuck ``pending`` and cooled-down ``failed`` rows; returns the row count."""
        with session_scope(self.session_factory) as db:
            rows = stored_files.thumbnail_backlog(
                db,
                limit=limit or settings.thumbnail_backlog_limit,
                cooldown_seconds=(
                    settings.thumbnail_retry_cooldown_seconds
                    if cooldown_seconds is None
                    else cooldown_seconds
                ),
            )
            jobs = [ThumbnailJob.from_record(row) for row in rows]
        if jobs:
            logger.info("thumbnail_backlog_found count=%s", len(jobs))
            THUMBNAIL_BACKLOG_ROWS.inc(len(jobs))
        for job in jobs:
            self.process_file(job)
        return len(jobs)

    def process_file(self, job: ThumbnailJob) -> None:
        start = time.monotonic()
        kind = ThumbnailKind.from_mime(job.file_type)
        logger.info(
            "thumbnail_processing file_id=%s file_type=%s kind=%s",
            job.file_id,
            job.file_type,
            kind.value,
        )
        try:
            with session_scope(self.session_factory) as db:
                if not stored_files.claim_for_thumbnails(db, job.file_id):
                    logger.info("thumbnail_skipped file_id=%s reason=not_claimable", job.file_id)
                    return

            if kind is ThumbnailKind.image:
                keys = self._process_image(job)
                with session_scope(self.session_factory) as db:
                    stored_files.complete_image(
                        db,
                        job.file_id,
                        small_key=keys["small"],
                        medium_key=keys["medium"],
                        large_key=keys["large"],
                    )
                status = "completed"
            elif kind is ThumbnailKind.pdf:
                medium_key = self._process_pdf(job)
                with session_scope(self.session_factory) as db:
                    stored_files.complete_pdf(db, job.file_id, medium_key=medium_key)
                status = "completed"
            else:
                with session_scope(self.session_factory) as db:
                    stored_files.mark_not_applicable(db, job.file_id)
                status = "not_applicable"
        except Exception as exc:
            logger.exception("thumbnail_failed file_id=%s", job.file_id)
            self._record_failure(job.file_id, str(exc) or exc.__class__.__name__)
            status = "failed"

        THUMBNAILS_PROCESSED.labels(kind=kind.value, status=status).inc()
        observe_job("generate_thumbnails", status, time.monotonic() - start)
        logger.info("thumbnail_done file_id=%s status=%s", job.file_id, status)

    def _process_image(self, job: ThumbnailJob) -> dict[str, str]:
        source = load_image(self.storage.download(job.s3_key))
        with ThreadPoolExecutor(max_workers=len(IMAGE_RENDITIONS)) as executor:
            futures = {
                spec.size: executor.submit(self._render_and_upload, source.copy(), job.s3_key, spec)
                for spec in IMAGE_RENDITIONS
            }
            # Any failed rendition fails the whole file; no partial key set is written
            return {size: future.result() for size, future in futures.items()}

    def _render_and_upload(self, image: Image.Image, s3_key: str, spec: RenditionSpec) -> str:
        key = thumbnail_key(s3_key, spec.size)
        self.storage.upload(key, render_cover(image, spec), "image/jpeg", THUMBNAIL_CACHE_CONTROL)
        return key

    def _process_pdf(self, job: ThumbnailJob) -> str:
        with tempfile.TemporaryDirectory(prefix=f"thumb-{job.file_id}-") as scratch:
            pdf_path = Path(scratch) / f"{job.file_id}.pdf"
            pdf_path.write_bytes(self.storage.download(job.s3_key))
            png_path = self.rasterizer.rasterize_first_page(pdf_path, settings.pdf_raster_width)
            if not png_path.exists():
                raise RasterizationError("PDF conversion failed - output file not found")
            with Image.open(png_path) as page:
                page.load()
                thumbnail = render_inside(page, PDF_RENDITION)
        key = thumbnail_key(job.s3_key, PDF_RENDITION.size)
        self.storage.upload(key, thumbnail, "image/jpeg", THUMBNAIL_CACHE_CONTROL)
        return key

    def _record_failure(self, file_id: uuid.UUID, error_message: str) -> None:
        try:
            with session_scope(self.session_factory) as db:
                stored_files.mark_failed(db, file_id, error_message)
        except Exception:
            logger.exception("thumbnail_failure_not_recorded file_id=%s", file_id)
