"""ICMP measurement source using the system `ping` command."""

from __future__ import annotations

import asyncio
import logging
import platform
import re
import subprocess
from math import ceil
from typing import Protocol

from .models import Measurement, utc_now

logger = logging.getLogger(__name__)

# "time=12.3 ms", "time = 12 ms" (Linux/macOS) and "time=12ms" (Windows)
_LATENCY_PATTERN = re.compile(r"time\s*=\s*(\d+(?:\.\d+)?)\s*ms", re.IGNORECASE)
# Windows fast replies: "time<1ms"
_LESS_THAN_PATTERN = re.compile(r"time<(\d+)", re.IGNORECASE)


class MeasurementSource(Protocol):
    async def probe(self, target: str) -> Measurement:
        """Probe `target` once and return the outcome as a Measurement."""


def parse_ping_latency_ms(output: str) -> float | None:
    """Parse the first reply latency from ping output (pure function).

    Windows "time<Nms" is interpreted as N/2 ms (midpoint estimate).

    Returns:
        Latency in milliseconds, or None if no reply line was found.

    Examples:
        >>> parse_ping_latency_ms("64 bytes from 8.8.8.8: icmp_seq=1 ttl=117 time=12.3 ms")
        12.3
        >>> parse_ping_latency_ms("Reply from 127.0.0.1: bytes=32 time<1ms TTL=128")
        0.5
        >>> parse_ping_latency_ms("Request timed out.") is None
        True
    """
    if not output:
        return None

    match = _LESS_THAN_PATTERN.search(output)
    if match:
        return float(match.group(1)) / 2.0

    match = _LATENCY_PATTERN.search(output)
    if match:
        return float(match.group(1))
    return None


class PingSource:
    """Measurement source that shells out to the OS `ping` command.

    A probe that gets no reply within `timeout_s`, exits non-zero, or whose
    output cannot be parsed is reported as a `timeout` measurement. Probing
    never raises for network conditions.
    """

    def __init__(self, *, source: str, timeout_s: float = 3.0, count: int = 1) -> None:
        if timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        if count < 1:
            raise ValueError("count must be >= 1")

        self.source = source
        self.timeout_s = timeout_s
        self.count = count
        self.system = platform.system()

    async def probe(self, target: str) -> Measurement:
        """Ping `target` once (in a worker thread) and build a Measurement."""
        return await asyncio.to_thread(self.sample, target)

    def sample(self, target: str) -> Measurement:
        """Synchronous probe; the timestamp is taken when the ping is issued."""
        timestamp = utc_now()
        cmd = self.build_command(target)

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                # Per-reply wait plus slack for process start and multi-packet probes.
                timeout=self.timeout_s * self.count + 1.0,
                shell=False,
            )
        except subprocess.TimeoutExpired:
            logger.debug("Ping timeout: host=%s, timeout=%.1fs", target, self.timeout_s)
            return Measurement.timeout(target, self.source, timestamp)
        except OSError as exc:
            logger.warning("Ping error: host=%s, error=%s", target, exc)
            return Measurement.timeout(target, self.source, timestamp)

        latency = parse_ping_latency_ms(result.stdout)
        if result.returncode != 0 or latency is None:
            logger.debug(
                "No reply: host=%s, returncode=%d, output_preview=%s",
                target,
                result.returncode,
                result.stdout[:100] if result.stdout else "(empty)",
            )
            return Measurement.timeout(target, self.source, timestamp)

        return Measurement.response_time(target, latency, self.source, timestamp)

    def build_command(self, target: str) -> list[str]:
        """Build the platform-specific ping command."""
        if self.system == "Windows":
            return ["ping", "-n", str(self.count), "-w", str(int(self.timeout_s * 1000)), target]
        if self.system == "Linux":
            return ["ping", "-c", str(self.count), "-W", str(max(1, ceil(self.timeout_s))), target]
        # macOS/BSD: -W is in milliseconds there, so rely on the subprocess timeout instead.
        return ["ping", "-c", str(self.count), target]
