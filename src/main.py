"""Command-line entrypoint for the continuous ping collector.

Startup sequence (any failure exits with status 1 before probing begins):

- `ping` must be available on PATH.
- Every target must be a dotted IPv4 address.
- Configuration is loaded and validated.
- One Azure AD token request must succeed.
- Each target is pinged once; unreachable targets only produce a warning.

After that the collector runs until SIGINT/SIGTERM and exits with status 0.
"""

from __future__ import annotations

import argparse
import asyncio
import ipaddress
import logging
import shutil
import sys
from collections.abc import Sequence

from collector.ping import PingSource
from collector.service import CollectorService
from collector.shutdown import EXIT_OK
from config import Config, load_config
from kusto.client import AuthenticationError, KustoIngestClient
from logging_config import configure_logging
from observability import DuckDBObservabilitySink, ObservabilityRecorder

logger = logging.getLogger(__name__)

EXIT_STARTUP_FAILURE = 1


def parse_targets(raw_targets: Sequence[str]) -> list[str]:
    """Validate target addresses; raises ValueError naming the first bad one."""
    targets: list[str] = []
    for raw in raw_targets:
        try:
            targets.append(str(ipaddress.IPv4Address(raw.strip())))
        except ipaddress.AddressValueError as exc:
            raise ValueError(f"Invalid IP address: {raw}") from exc
    if not targets:
        raise ValueError("At least one target IP address is required")
    return targets


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ping-collector",
        description=(
            "Continuously ping IPv4 targets and upload every result to Azure Data Explorer (Kusto). "
            "Failed uploads are buffered locally and retried."
        ),
    )
    parser.add_argument("targets", nargs="+", metavar="IP", help="IPv4 address to ping continuously")
    parser.add_argument(
        "--config",
        dest="config_file",
        default=None,
        help="KEY=value configuration file (e.g. kusto-config.conf); defaults to .env",
    )
    return parser


async def check_connectivity(source: PingSource, targets: Sequence[str]) -> None:
    """Ping each target once; warn (never fail) for unreachable ones."""
    logger.info("Testing connectivity to target IPs...")
    results = await asyncio.gather(*(source.probe(t) for t in targets))
    for measurement in results:
        if measurement.is_timeout:
            logger.warning("Cannot reach IP: %s (will continue anyway)", measurement.dst_ip)
    logger.info("Connectivity test completed")


async def run_collector(cfg: Config, targets: Sequence[str]) -> int:
    """Validate the Kusto connection, then collect until shutdown."""
    client = KustoIngestClient(cfg.kusto)

    logger.info("Validating Kusto configuration...")
    try:
        await client.authenticate()
    except AuthenticationError as exc:
        logger.error("Failed to authenticate with Azure AD: %s", exc)
        return EXIT_STARTUP_FAILURE
    logger.info("Kusto configuration validated")

    source = PingSource(source=cfg.probe.source, timeout_s=cfg.probe.ping_timeout, count=cfg.probe.ping_count)
    await check_connectivity(source, targets)

    recorder = None
    if cfg.observability_db_path:
        recorder = ObservabilityRecorder(sink=DuckDBObservabilitySink(path=cfg.observability_db_path))

    service = CollectorService(targets=targets, uploader=client, source=source, probe=cfg.probe, recorder=recorder)
    service.coordinator.install_signal_handlers()

    logger.info("Starting continuous ping data collection for Kusto")
    logger.info("Target IPs: %s", " ".join(targets))
    logger.info("Ping interval: %.1fs, timeout: %.1fs", cfg.probe.ping_interval, cfg.probe.ping_timeout)
    logger.info("Kusto cluster: %s (database %s, table %s)", cfg.kusto.cluster_url, cfg.kusto.database, cfg.kusto.table)
    logger.info("Buffer file: %s (max %d records)", cfg.probe.buffer_path, cfg.probe.max_buffer_size)

    try:
        return await service.run()
    finally:
        if recorder is not None:
            await recorder.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint for `ping-collector` / `python -m main`."""
    args = build_parser().parse_args(argv)
    configure_logging()

    if shutil.which("ping") is None:
        logger.error("Missing required tool: ping")
        return EXIT_STARTUP_FAILURE

    try:
        targets = parse_targets(args.targets)
        cfg = load_config(args.config_file)
    except ValueError as exc:
        logger.error("%s", exc)
        return EXIT_STARTUP_FAILURE

    configure_logging(debug=cfg.debug)
    try:
        return asyncio.run(run_collector(cfg, targets))
    except KeyboardInterrupt:
        # Signal handlers are only installed once startup checks pass.
        logger.info("Interrupted during startup. Network monitor stopped")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
