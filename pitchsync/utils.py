"""Shared utility functions used across PitchSync modules."""
from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the store keeps naive UTC)."""
    return datetime.now(UTC).replace(tzinfo=None)


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
