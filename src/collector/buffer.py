"""Durable local buffer for measurements that could not be delivered.

The buffer is an NDJSON file mirrored by an in-memory list. Every mutation
(append, rotation, drain replacement) and the current failure session id are
guarded by a single `asyncio.Lock`; probers only reach the file through
`append()`, and only `drain_once()` removes records.

Drain passes do not hold the lock while uploading. Each in-memory entry carries
a sequence number so a pass can remove exactly the records it delivered, even
if probers appended (or rotation discarded) records in the meantime.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import Callable, Sequence
from pathlib import Path

from pydantic import ValidationError

from observability.recorder import ObservabilityRecorder

from .models import DrainResult, Measurement
from .uploader import Uploader, try_upload

logger = logging.getLogger(__name__)

# Share of capacity kept when the buffer is rotated.
ROTATION_KEEP_PERCENT = 80


def rotation_keep_count(max_size: int) -> int:
    """Number of records kept after rotation: ceil(80% of capacity)."""
    return -(-max_size * ROTATION_KEEP_PERCENT // 100)


def _new_failure_id() -> str:
    return str(uuid.uuid4())


class DurableBuffer:
    """Bounded, file-backed queue of undelivered measurements."""

    def __init__(
        self,
        path: str | Path,
        *,
        max_size: int = 1000,
        recorder: ObservabilityRecorder | None = None,
        failure_id_factory: Callable[[], str] = _new_failure_id,
    ) -> None:
        """Open (or prepare) the buffer file at `path`.

        Existing records are loaded so undelivered data from a previous run is
        retried. If the file holds records, the newest record's failure id
        becomes the current failure session.
        """
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1. Got: {max_size}")

        self.path = Path(path)
        self.max_size = max_size
        self.keep_count = rotation_keep_count(max_size)

        self._recorder = recorder
        self._new_failure_id = failure_id_factory

        self._lock = asyncio.Lock()
        self._drain_lock = asyncio.Lock()

        self._entries: list[tuple[int, Measurement]] = []
        self._next_seq = 0
        self._failure_id: str | None = None
        # Set once capacity is exceeded; cleared when the buffer is fully emptied.
        self._rotating = False

        self._load()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def is_empty(self) -> bool:
        return not self._entries

    @property
    def failure_id(self) -> str | None:
        """Identifier of the current failure session (None when the buffer is empty)."""
        return self._failure_id

    def snapshot(self) -> list[Measurement]:
        """Return a point-in-time copy of the buffered records, oldest first."""
        return [record for _, record in self._entries]

    def _load(self) -> None:
        """Read an existing buffer file, skipping lines that do not parse."""
        if not self.path.exists():
            return

        records: list[Measurement] = []
        skipped = 0
        with self.path.open("rb") as fh:
            for raw in fh:
                try:
                    line = raw.decode("utf-8").strip()
                    if not line:
                        continue
                    records.append(Measurement.from_json_line(line))
                except (UnicodeDecodeError, ValidationError):
                    skipped += 1

        if skipped:
            logger.warning("Skipped %d malformed records in buffer file %s", skipped, self.path)

        for record in records:
            self._entries.append((self._next_seq, record))
            self._next_seq += 1

        if not self._entries:
            self.path.unlink(missing_ok=True)
            return

        self._failure_id = next(
            (r.failure_id for r in reversed(records) if r.failure_id is not None),
            None,
        ) or self._new_failure_id()

        if len(self._entries) > self.max_size:
            discarded = len(self._entries) - self.keep_count
            self._entries = self._entries[-self.keep_count :]
            self._rotating = True
            logger.warning(
                "Buffer rotated on load: keeping last %d records (%d discarded)", self.keep_count, discarded
            )
            self._write_all([r for _, r in self._entries])
        elif skipped:
            self._write_all([r for _, r in self._entries])

        logger.info(
            "Loaded %d buffered records from %s (failure session %s)",
            len(self._entries),
            self.path,
            self._failure_id,
        )

    async def append(self, record: Measurement) -> Measurement:
        """Stamp `record` with the current failure session id and persist it.

        Starts a new failure session when the buffer is empty. Applies rotation
        when capacity is exceeded. Returns the stamped record as stored.
        """
        discarded = 0
        async with self._lock:
            new_session = not self._entries or self._failure_id is None
            failure_id = self._new_failure_id() if new_session else self._failure_id
            stamped = record.with_failure_id(failure_id)

            entries = [*self._entries, (self._next_seq, stamped)]
            rotate = len(entries) > self.max_size or (self._rotating and len(entries) > self.keep_count)

            # Disk first: in-memory state only changes once the write succeeded.
            if rotate:
                discarded = len(entries) - self.keep_count
                entries = entries[-self.keep_count :]
                await asyncio.to_thread(self._write_all, [r for _, r in entries])
            else:
                await asyncio.to_thread(self._append_line, stamped.to_json_line())

            self._entries = entries
            self._next_seq += 1
            self._failure_id = failure_id
            if new_session:
                logger.info("New failure session started: %s", failure_id)
            if rotate:
                if not self._rotating:
                    logger.warning(
                        "Buffer capacity %d exceeded: keeping last %d records", self.max_size, self.keep_count
                    )
                self._rotating = True
                logger.debug("Buffer rotated: %d oldest records discarded", discarded)

        if discarded and self._recorder is not None:
            await self._recorder.record_message(
                {"discarded": discarded, "kept": self.keep_count, "max_size": self.max_size},
                kind="buffer",
                event_type="buffer_rotated",
                stage="durable_buffer",
                correlation_id=failure_id,
            )
        return stamped

    async def drain_once(self, uploader: Uploader) -> DrainResult:
        """Retry delivery of every buffered record and keep only the failures.

        Records are attempted oldest first. Survivors keep their relative order.
        Partial progress is persisted; when nothing remains the file is removed
        and the failure session ends.
        """
        async with self._drain_lock:
            async with self._lock:
                pending = list(self._entries)

            if not pending:
                return DrainResult(delivered=0, remaining=len(self._entries))

            delivered: set[int] = set()
            for seq, record in pending:
                if await try_upload(uploader, record):
                    delivered.add(seq)

            async with self._lock:
                if delivered:
                    self._entries = [entry for entry in self._entries if entry[0] not in delivered]
                remaining = len(self._entries)
                failure_id = self._failure_id

                if not self._entries:
                    await asyncio.to_thread(self._remove_file)
                    logger.debug("Buffer fully drained; failure session %s closed", self._failure_id)
                    self._failure_id = None
                    self._rotating = False
                elif delivered:
                    await asyncio.to_thread(self._write_all, [r for _, r in self._entries])

        result = DrainResult(delivered=len(delivered), remaining=remaining)
        if self._recorder is not None:
            await self._recorder.record_message(
                result,
                kind="drain",
                event_type="drain_completed",
                stage="durable_buffer",
                correlation_id=failure_id,
            )
        return result

    def _append_line(self, line: str) -> None:
        """Append one record line and flush it to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
            fh.flush()
            os.fsync(fh.fileno())

    def _write_all(self, records: Sequence[Measurement]) -> None:
        """Atomically replace the file contents with `records`."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            for record in records:
                fh.write(record.to_json_line() + "\n")
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, self.path)

    def _remove_file(self) -> None:
        self.path.unlink(missing_ok=True)
