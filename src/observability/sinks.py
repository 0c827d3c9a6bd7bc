"""Where journal records end up.

The recorder calls `write()` from a worker thread, so sinks do plain blocking
I/O and guard their own state with a `threading.Lock`.
"""

from __future__ import annotations

import json
import re
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

import duckdb

from .models import ObservabilityRecord

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_COLUMNS = (
    "logged_at",
    "occurred_at",
    "kind",
    "event_type",
    "stage",
    "correlation_id",
    "target",
    "summary_json",
)


class ObservabilitySink(Protocol):
    def write(self, record: ObservabilityRecord) -> None:
        """Persist one record."""

    def close(self) -> None:
        """Release the underlying storage."""


class InMemoryObservabilitySink:
    """Keeps records in a list; used by tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[ObservabilityRecord] = []

    def write(self, record: ObservabilityRecord) -> None:
        with self._lock:
            self._records.append(record)

    def close(self) -> None:
        return None

    def snapshot(self) -> Sequence[ObservabilityRecord]:
        with self._lock:
            return list(self._records)


class DuckDBObservabilitySink:
    """Delivery journal stored in an embedded DuckDB file.

    One row per pipeline event. `correlation_id` holds the failure session id,
    so all events of one outage can be selected together.
    """

    def __init__(self, *, path: str | Path, table: str = "collector_events") -> None:
        if not _TABLE_NAME.match(table):
            raise ValueError(f"table must be a plain SQL identifier. Got: {table!r}")

        self.path = Path(path)
        self.table = table
        self._lock = threading.Lock()
        self._conn = duckdb.connect(str(self.path))
        with self._lock:
            self._conn.execute(
                f"""
                create table if not exists {self.table} (
                  logged_at timestamptz not null,
                  occurred_at timestamptz not null,
                  kind varchar not null,
                  event_type varchar not null,
                  stage varchar not null,
                  correlation_id varchar,
                  target varchar,
                  summary_json varchar not null
                )
                """
            )

    def write(self, record: ObservabilityRecord) -> None:
        row = [
            record.logged_at,
            record.occurred_at,
            record.kind,
            record.event_type,
            record.stage,
            record.correlation_id,
            record.target,
            json.dumps(record.summary, separators=(",", ":"), sort_keys=True, default=str),
        ]
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self._lock:
            self._conn.execute(f"insert into {self.table} ({', '.join(_COLUMNS)}) values ({placeholders})", row)

    def count(self, event_type: str | None = None) -> int:
        """Number of stored events, optionally only those of `event_type`."""
        sql = f"select count(*) from {self.table}"
        params: list[Any] = []
        if event_type is not None:
            sql += " where event_type = ?"
            params.append(event_type)
        with self._lock:
            row = self._conn.execute(sql, params).fetchone()
        return int(row[0]) if row else 0

    def session_events(self, failure_id: str) -> list[dict[str, Any]]:
        """Events of one failure session, oldest first, with the summary decoded."""
        sql = (
            f"select event_type, target, summary_json from {self.table} "
            "where correlation_id = ? order by logged_at"
        )
        with self._lock:
            rows = self._conn.execute(sql, [failure_id]).fetchall()
        return [
            {"event_type": event_type, "target": target, "summary": json.loads(summary_json)}
            for event_type, target, summary_json in rows
        ]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
