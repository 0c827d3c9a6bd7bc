"""Uploader interface.

Delivery code depends on this small interface so the ingestion service can be
swapped (or faked in tests) without changing the pipeline or the buffer.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .models import Measurement

logger = logging.getLogger(__name__)


class Uploader(Protocol):
    async def authenticate(self) -> str:
        """Obtain a bearer token; raise on failure."""

    async def upload(self, token: str, record: Measurement) -> None:
        """Write a single record to the ingestion service; raise on failure."""


async def try_upload(uploader: Uploader, record: Measurement) -> bool:
    """Authenticate and upload one record, returning False on any failure.

    A failed authentication and a failed upload are treated the same way: the
    record was not delivered.
    """
    try:
        token = await uploader.authenticate()
        await uploader.upload(token, record)
    except Exception as exc:  # noqa: BLE001 - any failure means "not delivered"
        logger.debug("Upload attempt failed: dst=%s error=%s", record.dst_ip, exc)
        return False
    return True
