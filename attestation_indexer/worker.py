#!/usr/bin/env python3
"""
Attestation indexer worker

Single process that:
1. Polls the registry for Attested/Revoked logs since the last checkpoint
2. Tails new logs over a websocket subscription
3. Projects attestations into PostgreSQL (users, posts, likes, follows)
4. Serves an HTTP trigger for on-demand refreshes

Architecture:
- Node (JSON-RPC) → Poller / Live tail → Resolver → Event processor → PostgreSQL
- Link previews run on a separate best-effort worker queue
"""

import asyncio
import logging
import os
import signal
import time
from typing import List, Optional

from aiohttp import web

from attestation_indexer.checkpoints import CheckpointStore
from attestation_indexer.config import Settings
from attestation_indexer.database import DatabaseAdapter
from attestation_indexer.event_processor import EventProcessor
from attestation_indexer.http_api import create_app
from attestation_indexer.link_preview import LinkPreviewWorker
from attestation_indexer.live_tail import LiveTailSubscriber
from attestation_indexer.poller import PollResult, StreamPoller
from attestation_indexer.resolver import AttestationResolver
from attestation_indexer.rpc_client import RPCClient

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None):
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format='[%(asctime)s] [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


class IndexerWorker:
    """Wires the indexer components together and owns their lifecycle"""

    def __init__(self, settings: Settings):
        self.settings = settings

        self.db: Optional[DatabaseAdapter] = None
        self.rpc: Optional[RPCClient] = None
        self.link_previews: Optional[LinkPreviewWorker] = None
        self.processor: Optional[EventProcessor] = None
        self.checkpoints: Optional[CheckpointStore] = None
        self.resolver: Optional[AttestationResolver] = None
        self.poller: Optional[StreamPoller] = None
        self.live_tail: Optional[LiveTailSubscriber] = None

        self.running = False
        self.start_time = time.time()
        self._tasks: List[asyncio.Task] = []
        self._runner: Optional[web.AppRunner] = None
        self._main_task: Optional[asyncio.Task] = None

    async def initialize(self):
        """Initialize database, RPC and services"""
        settings = self.settings
        logger.info("Initializing attestation indexer...")

        self.db = DatabaseAdapter(settings.database_url)
        await self.db.connect(pool_size=settings.db_pool_size)
        await self.db.init_schema()

        self.rpc = RPCClient(settings.rpc_url)
        await self.rpc.initialize()

        self.link_previews = LinkPreviewWorker(self.db, fetch_timeout=settings.preview_timeout)
        await self.link_previews.initialize()

        self.processor = EventProcessor(self.db, self.link_previews)
        self.checkpoints = CheckpointStore(self.db, settings.contract_start_block)
        self.resolver = AttestationResolver(
            self.rpc,
            settings.contract_address,
            poll_interval=settings.resolve_poll_interval,
            max_attempts=settings.resolve_max_attempts,
        )
        self.poller = StreamPoller(
            self.rpc,
            self.resolver,
            self.processor,
            self.checkpoints,
            settings.contract_address,
            concurrency=settings.resolve_concurrency,
            log_block_range=settings.log_block_range,
            max_reresolve_passes=settings.max_reresolve_passes,
        )

        if settings.live_tail and settings.ws_rpc_url:
            self.live_tail = LiveTailSubscriber(
                settings.ws_rpc_url,
                settings.contract_address,
                self.resolver,
                self.poller,
                self.checkpoints,
            )

        logger.info("Attestation indexer initialized")

    async def update(self) -> List[PollResult]:
        """One refresh cycle; errors are logged so the caller keeps running"""
        try:
            results = await self.poller.refresh()
        except Exception as e:
            logger.error(f"Error during refresh: {e}", exc_info=True)
            return []

        for result in results:
            if result.busy:
                logger.info(f"[POLLER] {result.stream}: skipped, poll already running")
        return results

    async def _periodic_refresh(self):
        while self.running:
            await asyncio.sleep(self.settings.poll_interval)
            await self.update()

    async def start_http(self):
        app = create_app(self.poller, self.link_previews, self.processor)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, port=self.settings.http_port)
        await site.start()
        logger.info(f"Listening on port {self.settings.http_port}")

    async def run(self):
        """Initial catch-up, then live tail + periodic refresh until stopped"""
        self.running = True
        self._main_task = asyncio.current_task()

        try:
            await self.start_http()
            await self.update()

            if self.live_tail:
                self._tasks.append(asyncio.create_task(self.live_tail.run()))
            if self.settings.poll_interval > 0:
                self._tasks.append(asyncio.create_task(self._periodic_refresh()))

            while self.running:
                await asyncio.sleep(1)
        finally:
            self._main_task = None

    def request_shutdown(self, reason: str = "signal"):
        """Stop the run loop, interrupting an in-flight catch-up"""
        logger.info(f"Received {reason}, shutting down...")
        self.running = False
        if self._main_task and not self._main_task.done():
            self._main_task.cancel()

    async def stop(self):
        """Gracefully stop the worker"""
        logger.info("Stopping attestation indexer...")
        self.running = False

        if self.live_tail:
            await self.live_tail.stop()

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        # Print final metrics
        if self.processor:
            logger.info("Final metrics:")
            for key, value in {**self.processor.get_metrics(), **self.poller.get_metrics()}.items():
                logger.info(f"  {key}: {value:,}")

        if self.link_previews:
            await self.link_previews.close()
        if self.rpc:
            await self.rpc.close()
        if self.db:
            await self.db.close()

        elapsed = time.time() - self.start_time
        logger.info(f"Stopped after {elapsed:.0f}s")


async def main(settings: Optional[Settings] = None):
    """Main entry point"""
    configure_logging()
    settings = settings or Settings.from_env()

    logger.info("=" * 60)
    logger.info("Attestation Indexer")
    logger.info("=" * 60)
    logger.info(f"Chain:          {settings.chain.chain_name} ({settings.chain.chain_id})")
    logger.info(f"Contract:       {settings.contract_address}")
    logger.info(f"Start block:    {settings.contract_start_block}")
    logger.info(f"Poll interval:  {settings.poll_interval}s")
    logger.info(f"Live tail:      {'enabled' if settings.live_tail else 'disabled'}")
    logger.info("=" * 60)

    worker = IndexerWorker(settings)
    await worker.initialize()

    # Handle signals for graceful shutdown
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.request_shutdown, sig.name)

    try:
        await worker.run()
    except asyncio.CancelledError:
        logger.info("Run loop cancelled")
    finally:
        await worker.stop()


if __name__ == "__main__":
    asyncio.run(main())
