"""Delivery journal record models.

Records are designed to be:
- Durable and append-only (sink decides storage).
- Easy to link across one outage via the failure session id.
- Safe by default (store summaries + selected fields, never credentials).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(tz=timezone.utc)


RecordKind = Literal["delivery", "buffer", "drain", "lifecycle"]


class ObservabilityRecord(BaseModel):
    """A durable, structured record of one collector pipeline event."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    # High-level classification for downstream filtering.
    kind: RecordKind

    # A stable label (e.g., "measurement_buffered", "drain_completed").
    event_type: str

    # Component that produced the record (e.g., "delivery_pipeline").
    stage: str

    # Failure session id when the event belongs to an outage.
    correlation_id: str | None = None
    target: str | None = None

    occurred_at: datetime
    logged_at: datetime = Field(default_factory=utc_now)

    summary: dict[str, Any] = Field(default_factory=dict)
