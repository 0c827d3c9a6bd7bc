"""Unit tests for the ping measurement source."""

import subprocess
from typing import Any

import pytest

from collector.ping import PingSource, parse_ping_latency_ms

_LINUX_REPLY = """
PING 8.8.8.8 (8.8.8.8) 56(84) bytes of data.
64 bytes from 8.8.8.8: icmp_seq=1 ttl=117 time=12.3 ms

--- 8.8.8.8 ping statistics ---
1 packets transmitted, 1 received, 0% packet loss, time 0ms
rtt min/avg/max/mdev = 12.345/12.345/12.345/0.000 ms
"""

_LINUX_NO_REPLY = """
PING 10.255.255.1 (10.255.255.1) 56(84) bytes of data.

--- 10.255.255.1 ping statistics ---
1 packets transmitted, 0 received, 100% packet loss, time 0ms
"""


class TestParsePingLatency:
    def test_linux_reply(self):
        assert parse_ping_latency_ms(_LINUX_REPLY) == 12.3

    def test_macos_reply(self):
        output = "64 bytes from 172.217.14.206: icmp_seq=0 ttl=56 time=8.123 ms"
        assert parse_ping_latency_ms(output) == 8.123

    def test_windows_reply(self):
        output = "Reply from 142.250.185.46: bytes=32 time=15ms TTL=117"
        assert parse_ping_latency_ms(output) == 15.0

    def test_windows_less_than(self):
        assert parse_ping_latency_ms("Reply from 127.0.0.1: bytes=32 time<1ms TTL=128") == 0.5
        assert parse_ping_latency_ms("Reply from 192.168.1.1: bytes=32 time<10ms TTL=64") == 5.0

    def test_takes_first_reply_of_many(self):
        output = (
            "64 bytes from 1.1.1.1: icmp_seq=1 ttl=57 time=4.10 ms\n"
            "64 bytes from 1.1.1.1: icmp_seq=2 ttl=57 time=9.90 ms\n"
        )
        assert parse_ping_latency_ms(output) == 4.1

    def test_statistics_line_is_not_a_reply(self):
        # "time 0ms" in the summary has no "=" and must not parse.
        assert parse_ping_latency_ms(_LINUX_NO_REPLY) is None

    @pytest.mark.parametrize("output", ["", "Request timed out.", "Destination host unreachable."])
    def test_no_reply(self, output: str):
        assert parse_ping_latency_ms(output) is None


class _Completed:
    def __init__(self, returncode: int, stdout: str) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = ""


def _fake_run(result: Any, calls: list[list[str]] | None = None):
    def run(cmd: list[str], **kwargs: Any) -> Any:
        if calls is not None:
            calls.append(cmd)
        if isinstance(result, BaseException):
            raise result
        return result

    return run


class TestPingSource:
    def test_invalid_settings(self):
        with pytest.raises(ValueError):
            PingSource(source="lab", timeout_s=0)
        with pytest.raises(ValueError):
            PingSource(source="lab", count=0)

    def test_build_command_linux(self):
        src = PingSource(source="lab", timeout_s=2.5, count=1)
        src.system = "Linux"
        assert src.build_command("8.8.8.8") == ["ping", "-c", "1", "-W", "3", "8.8.8.8"]

    def test_build_command_windows(self):
        src = PingSource(source="lab", timeout_s=3, count=2)
        src.system = "Windows"
        assert src.build_command("8.8.8.8") == ["ping", "-n", "2", "-w", "3000", "8.8.8.8"]

    def test_build_command_macos(self):
        src = PingSource(source="lab")
        src.system = "Darwin"
        assert src.build_command("8.8.8.8") == ["ping", "-c", "1", "8.8.8.8"]

    @pytest.mark.asyncio
    async def test_probe_reply(self, monkeypatch: pytest.MonkeyPatch):
        calls: list[list[str]] = []
        monkeypatch.setattr("collector.ping.subprocess.run", _fake_run(_Completed(0, _LINUX_REPLY), calls))

        m = await PingSource(source="lab").probe("8.8.8.8")

        assert len(calls) == 1
        assert m.dst_ip == "8.8.8.8"
        assert m.observable_type == "responseTime"
        assert m.observable_value == 12.3
        assert m.source == "lab"
        assert m.failure_id is None

    @pytest.mark.asyncio
    async def test_probe_non_zero_exit_is_timeout(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr("collector.ping.subprocess.run", _fake_run(_Completed(1, _LINUX_NO_REPLY)))

        m = await PingSource(source="lab").probe("10.255.255.1")
        assert m.is_timeout
        assert m.observable_value == 1

    @pytest.mark.asyncio
    async def test_probe_subprocess_timeout_is_timeout(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr(
            "collector.ping.subprocess.run", _fake_run(subprocess.TimeoutExpired(cmd="ping", timeout=4))
        )

        m = await PingSource(source="lab").probe("10.255.255.1")
        assert m.is_timeout

    @pytest.mark.asyncio
    async def test_probe_missing_binary_is_timeout(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr("collector.ping.subprocess.run", _fake_run(FileNotFoundError("ping")))

        m = await PingSource(source="lab").probe("8.8.8.8")
        assert m.is_timeout

    @pytest.mark.asyncio
    async def test_probe_unparseable_output_is_timeout(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr("collector.ping.subprocess.run", _fake_run(_Completed(0, "Antwort von 8.8.8.8: Zeit=12ms")))

        m = await PingSource(source="lab").probe("8.8.8.8")
        assert m.is_timeout
