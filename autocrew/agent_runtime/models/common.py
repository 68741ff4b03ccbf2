"""Small helpers shared by the domain models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Timezone-aware current time.  All persisted timestamps are UTC."""
    return datetime.now(tz=UTC)
