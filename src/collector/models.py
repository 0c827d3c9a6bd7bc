"""Measurement and result models for the collector pipeline.

A `Measurement` serialises to exactly one NDJSON line using the ingestion
table's column names (`dstIp`, `observableType`, ...). The same line is used as
the upload body and as the durable buffer entry.
"""

from __future__ import annotations

import ipaddress
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

ObservableType = Literal["responseTime", "timeout"]
DeliveryStatus = Literal["delivered", "buffered", "dropped"]

# observableValue reported for a probe that got no reply.
TIMEOUT_SENTINEL = 1.0


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(tz=timezone.utc)


class Measurement(BaseModel):
    """One probe outcome (latency or timeout) for one target."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    timestamp: datetime
    type: Literal["ping"] = "ping"
    dst_ip: str = Field(alias="dstIp")
    observable_type: ObservableType = Field(alias="observableType")
    observable_value: float = Field(alias="observableValue")
    source: str

    # Set once, when the record first enters the durable buffer.
    failure_id: str | None = Field(default=None, alias="failureId")

    @field_validator("timestamp")
    def validate_timestamp(cls, v: datetime) -> datetime:
        """Normalise to UTC with millisecond precision."""
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        v = v.astimezone(timezone.utc)
        return v.replace(microsecond=(v.microsecond // 1000) * 1000)

    @field_validator("dst_ip")
    def validate_dst_ip(cls, v: str) -> str:
        try:
            return str(ipaddress.IPv4Address(v.strip()))
        except ipaddress.AddressValueError as exc:
            raise ValueError(f"dstIp must be a valid IPv4 address (got {v!r})") from exc

    @field_validator("source")
    def validate_source(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("source must not be empty")
        return v

    @model_validator(mode="after")
    def validate_observable(self) -> Measurement:
        if self.observable_type == "timeout" and self.observable_value != TIMEOUT_SENTINEL:
            raise ValueError(f"timeout measurements must carry observableValue={TIMEOUT_SENTINEL:g}")
        if self.observable_type == "responseTime" and self.observable_value < 0:
            raise ValueError("responseTime must not be negative")
        return self

    @field_serializer("timestamp")
    def serialize_timestamp(self, ts: datetime) -> str:
        return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"

    @classmethod
    def response_time(
        cls, dst_ip: str, latency_ms: float, source: str, timestamp: datetime | None = None
    ) -> Measurement:
        """Build a successful probe measurement."""
        return cls(
            timestamp=timestamp or utc_now(),
            dst_ip=dst_ip,
            observable_type="responseTime",
            observable_value=latency_ms,
            source=source,
        )

    @classmethod
    def timeout(cls, dst_ip: str, source: str, timestamp: datetime | None = None) -> Measurement:
        """Build a measurement for a probe that got no reply in time."""
        return cls(
            timestamp=timestamp or utc_now(),
            dst_ip=dst_ip,
            observable_type="timeout",
            observable_value=TIMEOUT_SENTINEL,
            source=source,
        )

    @property
    def is_timeout(self) -> bool:
        return self.observable_type == "timeout"

    def with_failure_id(self, failure_id: str) -> Measurement:
        """Return a copy stamped with `failure_id`; already-stamped records are returned as-is."""
        if self.failure_id is not None:
            return self
        return self.model_copy(update={"failure_id": failure_id})

    def to_wire(self) -> dict:
        """Return the ingestion/buffer representation (column names as keys)."""
        return self.model_dump(mode="json", by_alias=True)

    def to_json_line(self) -> str:
        """Serialise to a single NDJSON line (no trailing newline)."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json_line(cls, line: str) -> Measurement:
        return cls.model_validate_json(line)


class DeliveryResult(BaseModel):
    """Outcome of one `DeliveryPipeline.deliver` call."""

    model_config = ConfigDict(frozen=True)

    status: DeliveryStatus
    record: Measurement


class DrainResult(BaseModel):
    """Counts from one pass over the durable buffer."""

    model_config = ConfigDict(frozen=True)

    delivered: int = 0
    remaining: int = 0
