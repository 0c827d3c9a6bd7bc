from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _no_threads_in_unit_tests(monkeypatch: pytest.MonkeyPatch):
    """Run `asyncio.to_thread` inline for the Kusto client and ping source.

    Both wrap blocking calls (`requests`, `subprocess`) in `asyncio.to_thread`.
    In unit tests those calls are faked, so running them inline keeps the tests
    deterministic and avoids lingering threadpool workers.
    """

    async def _to_thread(func, /, *args, **kwargs):  # noqa: ANN001, D401
        return func(*args, **kwargs)

    monkeypatch.setattr("kusto.client.asyncio.to_thread", _to_thread)
    monkeypatch.setattr("collector.ping.asyncio.to_thread", _to_thread)
    yield
