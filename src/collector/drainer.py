"""Periodic retry of buffered measurements."""

from __future__ import annotations

import asyncio
import logging

from .buffer import DurableBuffer
from .models import DrainResult
from .scheduling import wait_cancelled
from .uploader import Uploader

logger = logging.getLogger(__name__)


class BufferDrainer:
    """Runs `DurableBuffer.drain_once` every `interval_s` seconds, alongside the probers."""

    def __init__(self, *, buffer: DurableBuffer, uploader: Uploader, interval_s: float = 30.0) -> None:
        self._buffer = buffer
        self._uploader = uploader
        self._interval_s = interval_s

    async def run(self, cancel: asyncio.Event) -> None:
        """Drain on a fixed period until `cancel` is set."""
        logger.info("Starting buffer processor for retry uploads (every %.1fs)", self._interval_s)
        while not await wait_cancelled(cancel, self._interval_s):
            await self.run_once()

    async def run_once(self) -> DrainResult | None:
        """One drain pass; returns None when the buffer was empty."""
        if self._buffer.is_empty:
            return None

        try:
            result = await self._buffer.drain_once(self._uploader)
        except OSError:
            logger.exception("Buffer drain failed while rewriting %s", self._buffer.path)
            return None

        if result.delivered > 0:
            logger.info("Uploaded %d buffered records to Kusto", result.delivered)
        if result.remaining > 0:
            logger.debug("%d records remain in buffer for retry", result.remaining)
        return result
