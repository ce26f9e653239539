"""
JSON-RPC client for the chain node.

Thin aiohttp wrapper around the three calls the indexer needs
(eth_blockNumber, eth_getLogs, eth_call) with exponential backoff on
transport and node errors.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from attestation_indexer.errors import RPCError
from attestation_indexer.models import RawLogEvent, parse_quantity

logger = logging.getLogger(__name__)


class RPCClient:
    """Async JSON-RPC client with retry"""

    def __init__(self, url: str, max_retries: int = 5, timeout_sec: int = 15, retry_delay: float = 0.5):
        self.url = url
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self.session: Optional[aiohttp.ClientSession] = None
        self._id = 1
        self.request_count = 0
        self.failure_count = 0

    async def initialize(self):
        """Initialize HTTP session"""
        if not self.session:
            self.session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self):
        """Close HTTP session"""
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self) -> "RPCClient":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def call(self, method: str, params: List[Any]) -> Any:
        if not self.session:
            raise RuntimeError("RPC session is not initialized")

        payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": params}
        self._id += 1

        delay = self.retry_delay
        for attempt in range(1, self.max_retries + 1):
            self.request_count += 1
            try:
                async with self.session.post(self.url, json=payload) as resp:
                    resp.raise_for_status()
                    data = await resp.json(content_type=None)
                if "error" in data:
                    raise RPCError(method, str(data["error"]))
                return data.get("result")
            except (aiohttp.ClientError, asyncio.TimeoutError, RPCError) as e:
                self.failure_count += 1
                if attempt >= self.max_retries:
                    raise RPCError(method, f"failed after {attempt} attempts: {e}") from e
                logger.warning(f"[RPC] {method} attempt {attempt} failed, retrying in {delay}s: {e}")
                await asyncio.sleep(delay)
                delay *= 2

    async def get_block_number(self) -> int:
        return parse_quantity(await self.call("eth_blockNumber", []))

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        address: Optional[str] = None,
        topics: Optional[List[Any]] = None,
    ) -> List[RawLogEvent]:
        f: Dict[str, Any] = {"fromBlock": hex(from_block), "toBlock": hex(to_block)}
        if address:
            f["address"] = address
        if topics:
            f["topics"] = topics
        result = await self.call("eth_getLogs", [f])
        return [RawLogEvent.from_rpc(raw) for raw in result or []]

    async def eth_call(self, to: str, data: str) -> str:
        return await self.call("eth_call", [{"to": to, "data": data}, "latest"])
