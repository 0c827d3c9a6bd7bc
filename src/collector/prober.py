"""Per-target probe loop."""

from __future__ import annotations

import asyncio
import logging

from .delivery import DeliveryPipeline
from .models import DeliveryResult
from .ping import MeasurementSource
from .scheduling import wait_cancelled

logger = logging.getLogger(__name__)


class Prober:
    """Probes one target on a fixed cadence and hands each result to the pipeline.

    A probe without a reply is a `timeout` observation, not an error, and is
    never retried within the same cycle.
    """

    def __init__(
        self,
        *,
        target: str,
        source: MeasurementSource,
        pipeline: DeliveryPipeline,
        cadence_s: float = 5.0,
    ) -> None:
        self.target = target
        self._source = source
        self._pipeline = pipeline
        self._cadence_s = cadence_s
        self.cycles = 0

    async def run(self, cancel: asyncio.Event) -> None:
        """Probe until `cancel` is set."""
        logger.info("Starting ping process for %s (every %.1fs)", self.target, self._cadence_s)
        while not cancel.is_set():
            await self.run_once()
            if await wait_cancelled(cancel, self._cadence_s):
                break
        logger.debug("Prober for %s stopped after %d cycles", self.target, self.cycles)

    async def run_once(self) -> DeliveryResult | None:
        """Execute one probe + delivery cycle."""
        self.cycles += 1
        try:
            measurement = await self._source.probe(self.target)
        except Exception:  # noqa: BLE001 - keep probing on source bugs
            logger.exception("Probe failed unexpectedly: host=%s", self.target)
            return None

        result = await self._pipeline.deliver(measurement)
        if result.status == "delivered":
            if measurement.is_timeout:
                logger.info("%s: TIMEOUT", self.target)
            else:
                logger.info("%s: %.1fms", self.target, measurement.observable_value)
        return result
