"""Async recorder that writes journal records without blocking the event loop."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from .models import ObservabilityRecord, RecordKind, utc_now
from .sinks import ObservabilitySink

_REDACTED_KEYS = ("client_secret", "secret", "token", "access_token", "password")


def _safe_getattr(obj: Any, name: str) -> Any:
    """Best-effort getattr that never raises."""
    try:
        return getattr(obj, name)
    except Exception:  # pragma: no cover
        return None


def _extract_target(message: Any) -> str | None:
    """Extract the probed address from a measurement-like message."""
    target = _safe_getattr(message, "dst_ip")
    if isinstance(target, str) and target:
        return target
    if isinstance(message, dict):
        target = message.get("dstIp") or message.get("target")
        if isinstance(target, str) and target:
            return target
    return None


def _extract_occurred_at(message: Any) -> datetime:
    """Use the measurement timestamp when present, otherwise `utc_now()`."""
    ts = _safe_getattr(message, "timestamp")
    if isinstance(ts, datetime):
        return ts
    return utc_now()


def _extract_summary(message: Any) -> dict[str, Any]:
    """Build a small, safe-to-store summary payload for a message."""
    if hasattr(message, "to_wire"):
        data = message.to_wire()
    elif hasattr(message, "model_dump"):
        data = message.model_dump(mode="json")
    elif isinstance(message, dict):
        data = dict(message)
    else:
        data = {"repr": repr(message)}

    for key in _REDACTED_KEYS:
        if key in data:
            data[key] = "[REDACTED]"
    return data


class ObservabilityRecorder:
    """Queues records and writes them in a background task."""

    def __init__(self, *, sink: ObservabilitySink, max_queue_size: int = 10000) -> None:
        """Create a recorder backed by a synchronous sink.

        Args:
            sink: Storage backend used by the background writer.
            max_queue_size: Bound for in-memory buffering; records are dropped
                when full so journaling never slows delivery.
        """
        self._sink = sink
        self._queue: asyncio.Queue[ObservabilityRecord | None] = asyncio.Queue(maxsize=max_queue_size)
        self._worker: asyncio.Task[None] | None = None
        self._closed = False

        self._write_failures = 0
        self._first_failure_at: datetime | None = None
        self._last_failure_at: datetime | None = None

    def _ensure_started(self) -> None:
        """Start the background writer task if it hasn't been started yet."""
        if self._worker is not None:
            return
        self._worker = asyncio.create_task(self._run_worker(), name="observability-writer")

    async def record_message(
        self,
        message: Any,
        *,
        kind: RecordKind,
        event_type: str,
        stage: str,
        correlation_id: str | None = None,
    ) -> None:
        """Record a message by enqueueing an ObservabilityRecord (non-blocking)."""
        if self._closed:
            return

        self._ensure_started()

        record = ObservabilityRecord(
            kind=kind,
            event_type=event_type,
            stage=stage,
            correlation_id=correlation_id,
            target=_extract_target(message),
            occurred_at=_extract_occurred_at(message),
            logged_at=utc_now(),
            summary=_extract_summary(message),
        )

        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self._note_failure()

    async def aclose(self) -> None:
        """Flush and close the recorder.

        Safe to call multiple times.
        """
        if self._closed:
            return
        self._closed = True
        if self._worker is not None:
            await self._queue.put(None)
            await self._worker
        await asyncio.to_thread(self._sink.close)

    async def _run_worker(self) -> None:
        """Background loop that drains the queue and writes to the sink."""
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                await asyncio.to_thread(self._sink.write, item)
            except Exception:  # noqa: BLE001 - journaling must not affect delivery
                self._note_failure()
            finally:
                self._queue.task_done()

    def _note_failure(self) -> None:
        now = utc_now()
        self._write_failures += 1
        self._first_failure_at = self._first_failure_at or now
        self._last_failure_at = now

    def degraded_status(self) -> dict[str, Any]:
        """Return a minimal degraded-status snapshot."""
        return {
            "write_failures": self._write_failures,
            "first_failure_at": self._first_failure_at,
            "last_failure_at": self._last_failure_at,
        }
