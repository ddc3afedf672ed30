from __future__ import annotations

from uuid import UUID

from uuid6 import uuid7  # type: ignore[import-not-found]


def new_id() -> UUID:
    """Primary key for users and counters (UUIDv7, time-ordered)."""
    return uuid7()
