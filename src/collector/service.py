"""Wires probers, the delivery pipeline, the buffer drainer and shutdown together."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from config import ProbeConfig
from observability.recorder import ObservabilityRecorder

from .buffer import DurableBuffer
from .delivery import DeliveryPipeline
from .drainer import BufferDrainer
from .ping import MeasurementSource
from .prober import Prober
from .shutdown import ShutdownCoordinator
from .uploader import Uploader

logger = logging.getLogger(__name__)


class CollectorService:
    """One prober task per target plus one drainer task, until shutdown."""

    def __init__(
        self,
        *,
        targets: Sequence[str],
        uploader: Uploader,
        source: MeasurementSource,
        probe: ProbeConfig,
        recorder: ObservabilityRecorder | None = None,
    ) -> None:
        if not targets:
            raise ValueError("at least one target is required")

        self.targets = list(dict.fromkeys(targets))
        self.buffer = DurableBuffer(probe.buffer_path, max_size=probe.max_buffer_size, recorder=recorder)
        self.pipeline = DeliveryPipeline(uploader=uploader, buffer=self.buffer, recorder=recorder)
        self.probers = [
            Prober(target=t, source=source, pipeline=self.pipeline, cadence_s=probe.ping_interval)
            for t in self.targets
        ]
        self.drainer = BufferDrainer(buffer=self.buffer, uploader=uploader, interval_s=probe.retry_interval)
        self.coordinator = ShutdownCoordinator(buffer=self.buffer, uploader=uploader, recorder=recorder)

    def request_shutdown(self, reason: str = "shutdown requested") -> None:
        self.coordinator.request_shutdown(reason)

    async def run(self) -> int:
        """Run until shutdown is requested; returns the exit status."""
        cancel = self.coordinator.cancel
        logger.info("Starting parallel ping processes for %s", ", ".join(self.targets))

        tasks = [asyncio.create_task(self.drainer.run(cancel), name="buffer-drainer")]
        tasks += [asyncio.create_task(p.run(cancel), name=f"prober-{p.target}") for p in self.probers]
        return await self.coordinator.run(tasks)
