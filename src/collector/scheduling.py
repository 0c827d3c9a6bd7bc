"""Cancellation-aware sleeping shared by the prober and drainer loops."""

from __future__ import annotations

import asyncio


async def wait_cancelled(cancel: asyncio.Event, timeout_s: float) -> bool:
    """Sleep up to `timeout_s`, waking early if `cancel` is set.

    Returns True if cancellation was requested.
    """
    if cancel.is_set():
        return True
    try:
        await asyncio.wait_for(cancel.wait(), timeout=timeout_s)
    except TimeoutError:
        return False
    return True
