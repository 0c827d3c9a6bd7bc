import asyncio
import logging
from pathlib import Path

import pytest

from collector.buffer import DurableBuffer
from collector.delivery import DeliveryPipeline
from collector.drainer import BufferDrainer
from collector.models import Measurement
from collector.prober import Prober
from collector.scheduling import wait_cancelled


class _FakeSource:
    def __init__(self, *, latency_ms: float | None = 10.0, error: Exception | None = None) -> None:
        self.latency_ms = latency_ms
        self.error = error
        self.targets: list[str] = []

    async def probe(self, target: str) -> Measurement:
        self.targets.append(target)
        if self.error is not None:
            raise self.error
        if self.latency_ms is None:
            return Measurement.timeout(target, "test")
        return Measurement.response_time(target, self.latency_ms, "test")


class _FakeUploader:
    def __init__(self, *, healthy: bool = True) -> None:
        self.healthy = healthy
        self.uploaded: list[Measurement] = []

    async def authenticate(self) -> str:
        return "token"

    async def upload(self, token: str, record: Measurement) -> None:
        if not self.healthy:
            raise RuntimeError("HTTP 503")
        self.uploaded.append(record)


def _pipeline(tmp_path: Path, uploader: _FakeUploader) -> DeliveryPipeline:
    return DeliveryPipeline(uploader=uploader, buffer=DurableBuffer(tmp_path / "buf.jsonl", max_size=10))


@pytest.mark.asyncio
async def test_wait_cancelled_times_out():
    assert await wait_cancelled(asyncio.Event(), 0.01) is False


@pytest.mark.asyncio
async def test_wait_cancelled_returns_early_when_set():
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.01, cancel.set)
    assert await wait_cancelled(cancel, 10.0) is True


class TestProber:
    @pytest.mark.asyncio
    async def test_run_once_delivers_measurement(self, tmp_path: Path, caplog: pytest.LogCaptureFixture):
        uploader = _FakeUploader()
        prober = Prober(target="8.8.8.8", source=_FakeSource(latency_ms=12.34), pipeline=_pipeline(tmp_path, uploader))

        with caplog.at_level(logging.INFO, logger="collector.prober"):
            result = await prober.run_once()

        assert result is not None
        assert result.status == "delivered"
        assert [r.dst_ip for r in uploader.uploaded] == ["8.8.8.8"]
        assert "8.8.8.8: 12.3ms" in caplog.text

    @pytest.mark.asyncio
    async def test_timeout_is_delivered_as_observation(self, tmp_path: Path, caplog: pytest.LogCaptureFixture):
        uploader = _FakeUploader()
        prober = Prober(target="10.0.0.1", source=_FakeSource(latency_ms=None), pipeline=_pipeline(tmp_path, uploader))

        with caplog.at_level(logging.INFO, logger="collector.prober"):
            result = await prober.run_once()

        assert result is not None
        assert result.record.is_timeout
        assert uploader.uploaded[0].observable_value == 1
        assert "10.0.0.1: TIMEOUT" in caplog.text

    @pytest.mark.asyncio
    async def test_upload_failure_buffers(self, tmp_path: Path):
        pipeline = _pipeline(tmp_path, _FakeUploader(healthy=False))
        prober = Prober(target="8.8.8.8", source=_FakeSource(), pipeline=pipeline)

        result = await prober.run_once()

        assert result is not None
        assert result.status == "buffered"

    @pytest.mark.asyncio
    async def test_source_error_skips_cycle(self, tmp_path: Path):
        uploader = _FakeUploader()
        prober = Prober(
            target="8.8.8.8",
            source=_FakeSource(error=RuntimeError("boom")),
            pipeline=_pipeline(tmp_path, uploader),
        )

        assert await prober.run_once() is None
        assert prober.cycles == 1
        assert uploader.uploaded == []

    @pytest.mark.asyncio
    async def test_run_stops_when_cancelled(self, tmp_path: Path):
        source = _FakeSource()
        prober = Prober(target="8.8.8.8", source=source, pipeline=_pipeline(tmp_path, _FakeUploader()), cadence_s=0.01)
        cancel = asyncio.Event()

        task = asyncio.create_task(prober.run(cancel))
        await asyncio.sleep(0.05)
        cancel.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert prober.cycles >= 2
        assert set(source.targets) == {"8.8.8.8"}

    @pytest.mark.asyncio
    async def test_run_with_cancel_already_set_does_not_probe(self, tmp_path: Path):
        source = _FakeSource()
        prober = Prober(target="8.8.8.8", source=source, pipeline=_pipeline(tmp_path, _FakeUploader()))
        cancel = asyncio.Event()
        cancel.set()

        await prober.run(cancel)

        assert source.targets == []


class TestBufferDrainer:
    @pytest.mark.asyncio
    async def test_idle_when_buffer_empty(self, tmp_path: Path):
        uploader = _FakeUploader()
        drainer = BufferDrainer(buffer=DurableBuffer(tmp_path / "buf.jsonl"), uploader=uploader)

        assert await drainer.run_once() is None

    @pytest.mark.asyncio
    async def test_uploads_buffered_records(self, tmp_path: Path, caplog: pytest.LogCaptureFixture):
        buf = DurableBuffer(tmp_path / "buf.jsonl", max_size=10)
        await buf.append(Measurement.timeout("8.8.8.8", "test"))
        await buf.append(Measurement.timeout("1.1.1.1", "test"))
        uploader = _FakeUploader()
        drainer = BufferDrainer(buffer=buf, uploader=uploader)

        with caplog.at_level(logging.INFO, logger="collector.drainer"):
            result = await drainer.run_once()

        assert result is not None
        assert result.delivered == 2
        assert buf.is_empty
        assert all(r.failure_id is not None for r in uploader.uploaded)
        assert "Uploaded 2 buffered records to Kusto" in caplog.text

    @pytest.mark.asyncio
    async def test_keeps_records_while_service_down(self, tmp_path: Path):
        buf = DurableBuffer(tmp_path / "buf.jsonl", max_size=10)
        await buf.append(Measurement.timeout("8.8.8.8", "test"))
        drainer = BufferDrainer(buffer=buf, uploader=_FakeUploader(healthy=False))

        result = await drainer.run_once()

        assert result is not None
        assert result.delivered == 0
        assert result.remaining == 1

    @pytest.mark.asyncio
    async def test_run_drains_periodically_until_cancelled(self, tmp_path: Path):
        buf = DurableBuffer(tmp_path / "buf.jsonl", max_size=10)
        await buf.append(Measurement.timeout("8.8.8.8", "test"))
        uploader = _FakeUploader()
        drainer = BufferDrainer(buffer=buf, uploader=uploader, interval_s=0.01)
        cancel = asyncio.Event()

        task = asyncio.create_task(drainer.run(cancel))
        await asyncio.sleep(0.05)
        cancel.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert buf.is_empty
        assert len(uploader.uploaded) == 1
