"""Graceful shutdown: stop probing, drain once more, wait for in-flight work.

Shutdown is cooperative. Probers and the drainer observe the shared
cancellation event at their next suspension point; in-flight pings and uploads
are allowed to finish.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Iterable
from typing import Literal

from observability.recorder import ObservabilityRecorder

from .buffer import DurableBuffer
from .models import DrainResult
from .uploader import Uploader

logger = logging.getLogger(__name__)

ShutdownState = Literal["running", "draining", "terminated"]

EXIT_OK = 0


class ShutdownCoordinator:
    """Owns the `running -> draining -> terminated` lifecycle."""

    def __init__(
        self,
        *,
        buffer: DurableBuffer,
        uploader: Uploader,
        cancel: asyncio.Event | None = None,
        recorder: ObservabilityRecorder | None = None,
    ) -> None:
        self._buffer = buffer
        self._uploader = uploader
        self.cancel = cancel if cancel is not None else asyncio.Event()
        self._recorder = recorder
        self._state: ShutdownState = "running"
        self.final_drain: DrainResult | None = None

    @property
    def state(self) -> ShutdownState:
        return self._state

    def request_shutdown(self, reason: str = "shutdown requested") -> None:
        """Signal every task to stop. Repeated requests are ignored."""
        if self.cancel.is_set():
            return
        logger.info("Received %s. Stopping network monitor...", reason)
        self.cancel.set()

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Route SIGINT/SIGTERM to `request_shutdown`."""
        loop = loop or asyncio.get_running_loop()

        def _from_thread(signum: int, _frame: object) -> None:
            loop.call_soon_threadsafe(self.request_shutdown, signal.Signals(signum).name)

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler.
                signal.signal(sig, _from_thread)

    async def run(self, tasks: Iterable[asyncio.Task[None]]) -> int:
        """Wait for a shutdown request, then drain and wait for `tasks`.

        Returns the process exit status.
        """
        tasks = list(tasks)
        await self.cancel.wait()

        self._state = "draining"
        if not self._buffer.is_empty:
            logger.info("Processing remaining buffered records...")
        try:
            self.final_drain = await self._buffer.drain_once(self._uploader)
        except OSError:
            logger.exception("Final buffer drain failed")
        else:
            if self.final_drain.delivered:
                logger.info("Uploaded %d buffered records to Kusto", self.final_drain.delivered)

        logger.info("Waiting for in-flight probes to complete...")
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, outcome in zip(tasks, results):
            if isinstance(outcome, BaseException) and not isinstance(outcome, asyncio.CancelledError):
                logger.error("Task %s ended with error: %r", task.get_name(), outcome)

        # Includes records buffered by probes that were in flight at cancellation.
        remaining = len(self._buffer)
        if remaining:
            logger.warning("%d records remain in buffer: %s", remaining, self._buffer.path)

        self._state = "terminated"
        if self._recorder is not None:
            await self._recorder.record_message(
                {"remaining": remaining, "buffer_path": str(self._buffer.path)},
                kind="lifecycle",
                event_type="shutdown_completed",
                stage="shutdown_coordinator",
                correlation_id=self._buffer.failure_id,
            )
        logger.info("Network monitor stopped")
        return EXIT_OK
