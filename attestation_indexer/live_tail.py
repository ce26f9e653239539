"""
Live tail of registry events over a websocket subscription.

Each pushed log goes through the same resolve/apply path as a polled
single-element batch. The stream checkpoint is then moved forward only if
it already exists and the event's block is newer, so the live path can never
regress a checkpoint advanced by a concurrent poll, nor create one that
would make the poller skip history.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import websockets
from websockets.exceptions import WebSocketException

from attestation_indexer.models import RawLogEvent
from attestation_indexer.poller import CREATION, REVOCATION, stream_for_log

logger = logging.getLogger(__name__)


class LiveTailSubscriber:
    """Subscribes to Attested/Revoked logs and applies them as they arrive"""

    def __init__(
        self,
        ws_url: str,
        contract_address: str,
        resolver,
        poller,
        checkpoints,
    ):
        self.ws_url = ws_url
        self.contract_address = contract_address
        self.resolver = resolver
        self.poller = poller
        self.checkpoints = checkpoints

        self.websocket = None
        self.running = False
        self.subscription_id: Optional[str] = None

        # Metrics
        self.event_count = 0
        self.error_count = 0

        # Reconnection
        self.reconnect_delay = 1
        self.max_reconnect_delay = 30

    def subscription_filter(self) -> Dict[str, Any]:
        return {
            "address": self.contract_address,
            "topics": [[CREATION.topic, REVOCATION.topic]],
        }

    async def handle_message(self, message: str) -> bool:
        """Handle one websocket text frame"""
        data = json.loads(message)

        if "error" in data:
            logger.error(f"[LIVE_TAIL] Subscription error: {data['error']}")
            return False

        if data.get("method") != "eth_subscription":
            if data.get("result") and not self.subscription_id:
                self.subscription_id = data["result"]
                logger.info(f"[LIVE_TAIL] Subscribed ({self.subscription_id})")
            return False

        raw = data.get("params", {}).get("result")
        if not raw:
            return False

        return await self.handle_log(RawLogEvent.from_rpc(raw))

    async def handle_log(self, log: RawLogEvent) -> bool:
        """Resolve and apply one pushed log, then advance its stream checkpoint"""
        if log.removed:
            return False

        spec = stream_for_log(log, self.contract_address)
        if spec is None:
            return False

        try:
            attestation = await self.resolver.resolve(log)
        except Exception as e:
            self.error_count += 1
            logger.error(f"[LIVE_TAIL] Unable to resolve {log.uid} (tx {log.transaction_hash}): {e}")
            return False

        await self.poller.apply(spec, log, attestation)
        await self.checkpoints.advance_if_newer(spec.name, log.block_number)

        self.event_count += 1
        logger.info(f"[LIVE_TAIL] Applied {spec.name} event {attestation.id} at block {log.block_number}")
        return True

    async def connect_websocket(self) -> None:
        """Connect, subscribe, and process notifications until the socket closes"""
        logger.info(f"[LIVE_TAIL] Connecting to {self.ws_url}...")

        async with websockets.connect(
            self.ws_url,
            ping_interval=30,
            ping_timeout=45,
            max_size=10 * 1024 * 1024,
        ) as websocket:
            self.websocket = websocket
            self.subscription_id = None

            await websocket.send(json.dumps({
                "jsonrpc": "2.0",
                "id": 1,
                "method": "eth_subscribe",
                "params": ["logs", self.subscription_filter()],
            }))

            # Reset reconnect delay on successful connection
            self.reconnect_delay = 1

            async for message in websocket:
                if not self.running:
                    break
                try:
                    await self.handle_message(message)
                except (ValueError, KeyError) as e:
                    self.error_count += 1
                    logger.warning(f"[LIVE_TAIL] Malformed message: {e}")
                except Exception as e:
                    self.error_count += 1
                    logger.error(f"[LIVE_TAIL] Error handling event: {e}", exc_info=True)

    async def run(self) -> None:
        """Main run loop with automatic reconnection."""
        self.running = True

        while self.running:
            try:
                await self.connect_websocket()
            except (WebSocketException, OSError) as e:
                if not self.running:
                    break
                logger.error(f"[LIVE_TAIL] Connection lost: {e}")

            if not self.running:
                break

            logger.info(f"[LIVE_TAIL] Reconnecting in {self.reconnect_delay}s...")
            await asyncio.sleep(self.reconnect_delay)
            self.reconnect_delay = min(self.reconnect_delay * 2, self.max_reconnect_delay)

    async def stop(self) -> None:
        """Gracefully stop the subscriber."""
        self.running = False
        if self.websocket:
            await self.websocket.close()
        logger.info(f"[LIVE_TAIL] Stopped. Events applied: {self.event_count:,}, errors: {self.error_count:,}")
