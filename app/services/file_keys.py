"""Object key layout and MIME classification shared by client and workers.

Keys are a wire-level contract:

    {entity_type}/{entity_id}/{file_id}/original.{ext}
    {entity_type}/{entity_id}/{file_id}/thumb-{small|medium|large}.jpg

Thumbnail keys are derived from the original key alone, so no mapping needs
to be stored anywhere.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass

_ORIGINAL_SUFFIX_RE = re.compile(r"/original\..*$")


class ThumbnailKind(enum.Enum):
    image = "image"
    pdf = "pdf"
    other = "other"

    @classmethod
    def from_mime(cls, file_type: str | None) -> "ThumbnailKind":
        mime = (file_type or "").strip().lower()
        if mime.startswith("image/"):
            return cls.image
        if mime == "application/pdf":
            return cls.pdf
        return cls.other

    @property
    def has_thumbnails(self) -> bool:
        return self is not ThumbnailKind.other


@dataclass(frozen=True)
class RenditionSpec:
    size: str
    width: int
    height: int
    quality: int


IMAGE_RENDITIONS: tuple[RenditionSpec, ...] = (
    RenditionSpec("small", 150, 150, 75),
    RenditionSpec("medium", 400, 400, 80),
    RenditionSpec("large", 800, 800, 85),
)
PDF_RENDITION = RenditionSpec("medium", 400, 400, 85)
THUMBNAIL_SIZES = frozenset(spec.size for spec in IMAGE_RENDITIONS)


def file_extension(file_name: str) -> str:
    """Lowercased text after the last dot; the whole name when there is none."""
    return file_name.rsplit(".", 1)[-1].lower()


def key_prefix(entity_type: str, entity_id: str, file_id) -> str:
    return f"{entity_type}/{entity_id}/{file_id}"


def original_key(entity_type: str, entity_id: str, file_id, file_name: str) -> str:
    return f"{key_prefix(entity_type, entity_id, file_id)}/original.{file_extension(file_name)}"


def thumbnail_key(s3_original_key: str, size: str) -> str:
    if size not in THUMBNAIL_SIZES:
        raise ValueError(f"Unknown thumbnail size: {size}")
    base_path = _ORIGINAL_SUFFIX_RE.sub("", s3_original_key)
    return f"{base_path}/thumb-{size}.jpg"
