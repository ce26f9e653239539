"""Tests for worker lifecycle."""

import asyncio

import pytest

from attestation_indexer.config import Settings, get_chain_config
from attestation_indexer.worker import IndexerWorker


class StalledPoller:
    """Poller whose catch-up never finishes on its own"""

    def __init__(self):
        self.started = asyncio.Event()

    async def refresh(self):
        self.started.set()
        await asyncio.Event().wait()


@pytest.fixture
def settings():
    return Settings(
        chain=get_chain_config(11155111),
        database_url="postgresql://localhost/attestations",
        rpc_url="http://localhost:8545",
        ws_rpc_url=None,
        live_tail=False,
    )


@pytest.mark.asyncio
async def test_shutdown_interrupts_initial_catch_up(settings):
    worker = IndexerWorker(settings)
    worker.poller = StalledPoller()

    async def no_http():
        pass

    worker.start_http = no_http

    task = asyncio.create_task(worker.run())
    await asyncio.wait_for(worker.poller.started.wait(), timeout=1)

    worker.request_shutdown("SIGTERM")

    with pytest.raises(asyncio.CancelledError):
        await task
    assert not worker.running
    assert worker._main_task is None


@pytest.mark.asyncio
async def test_shutdown_without_run_is_noop(settings):
    worker = IndexerWorker(settings)
    worker.request_shutdown()
    assert not worker.running
