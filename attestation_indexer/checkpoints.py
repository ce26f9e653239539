"""
Durable per-stream block checkpoints.
"""

import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Last fully processed block per logical stream (service_stats rows)"""

    def __init__(self, db, default_block: int):
        self.db = db
        self.default_block = default_block

    async def get(self, stream: str) -> Optional[int]:
        return await self.db.get_checkpoint(stream)

    async def start_block(self, stream: str) -> int:
        """Block to resume after; the contract deployment block when unset or zero"""
        value = await self.get(stream)
        if not value:
            return self.default_block
        return int(value)

    async def advance(self, stream: str, block: int) -> int:
        """Advance (or create) the checkpoint after a committed batch"""
        value = await self.db.upsert_checkpoint(stream, block)
        logger.debug(f"[CHECKPOINT] {stream} -> {value}")
        return value

    async def advance_if_newer(self, stream: str, block: int) -> bool:
        """Advance an existing checkpoint; never creates or regresses it"""
        advanced = await self.db.advance_existing_checkpoint(stream, block)
        if advanced:
            logger.debug(f"[CHECKPOINT] {stream} -> {block} (live)")
        return advanced

    async def snapshot(self) -> Dict[str, int]:
        return await self.db.list_checkpoints()
