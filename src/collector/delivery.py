"""Delivery pipeline: one immediate upload attempt, otherwise buffer.

There is no retry loop here. A failed record goes to the durable
buffer and the buffer drainer owns every further attempt, so a prober's cadence
is bounded by a single upload timeout.
"""

from __future__ import annotations

import logging

from observability.models import RecordKind
from observability.recorder import ObservabilityRecorder

from .buffer import DurableBuffer
from .models import DeliveryResult, Measurement
from .uploader import Uploader, try_upload

logger = logging.getLogger(__name__)


class DeliveryPipeline:
    """Delivers measurements to the uploader, falling back to the durable buffer."""

    def __init__(
        self,
        *,
        uploader: Uploader,
        buffer: DurableBuffer,
        recorder: ObservabilityRecorder | None = None,
    ) -> None:
        self._uploader = uploader
        self._buffer = buffer
        self._recorder = recorder

    async def deliver(self, record: Measurement) -> DeliveryResult:
        """Upload `record` once; buffer it on failure.

        Never raises for delivery or storage problems; the outcome is reported
        through `DeliveryResult.status`.
        """
        if await try_upload(self._uploader, record):
            logger.debug("Delivered measurement: dst=%s type=%s", record.dst_ip, record.observable_type)
            await self._record("measurement_delivered", record, kind="delivery")
            return DeliveryResult(status="delivered", record=record)

        try:
            stamped = await self._buffer.append(record)
        except OSError:
            logger.exception(
                "Could not write buffer file %s; measurement for %s dropped", self._buffer.path, record.dst_ip
            )
            return DeliveryResult(status="dropped", record=record)

        logger.warning(
            "Upload failed for %s, added to buffer for retry (%d pending, failure session %s)",
            record.dst_ip,
            len(self._buffer),
            stamped.failure_id,
        )
        await self._record("measurement_buffered", stamped, kind="buffer")
        return DeliveryResult(status="buffered", record=stamped)

    async def _record(self, event_type: str, record: Measurement, *, kind: RecordKind) -> None:
        if self._recorder is None:
            return
        await self._recorder.record_message(
            record,
            kind=kind,
            event_type=event_type,
            stage="delivery_pipeline",
            correlation_id=record.failure_id,
        )
