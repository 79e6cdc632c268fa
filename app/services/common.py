"""Common helper functions for the service layer."""

from __future__ import annotations

import uuid

from fastapi import HTTPException


def coerce_uuid(value):
    """Convert value to UUID, returning None if value is None."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def parse_uuid_or_404(value, label: str) -> uuid.UUID:
    """Parse a path/query identifier, treating malformed ids as missing rows."""
    try:
        return coerce_uuid(value)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=404, detail=f"{label} not found") from exc


def apply_pagination(query, limit: int, offset: int):
    """Apply pagination to a query."""
    return query.limit(limit).offset(offset)
