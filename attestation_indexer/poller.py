"""
Stream poller.

One poll cycle per stream: read the checkpoint, fetch logs up to the chain
head, resolve them with bounded parallelism, apply them in log order, then
advance the checkpoint. Only one cycle runs at a time; a request made while
a cycle is in flight returns a 'busy' result instead of queueing.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from attestation_indexer import abi, schemas
from attestation_indexer.errors import RPCError, ResolutionTimeout
from attestation_indexer.models import (
    CREATION_STREAM,
    REVOCATION_STREAM,
    RawLogEvent,
    ResolvedAttestation,
)

logger = logging.getLogger(__name__)

# Per-event resolution failures that send a log to the re-resolution queue
RESOLUTION_FAILURES = (ResolutionTimeout, RPCError, ValueError)


@dataclass(frozen=True)
class StreamSpec:
    """A logical event stream and the log filter that feeds it"""

    name: str
    event_signature: str
    schema_ids: Tuple[str, ...]
    revocation: bool = False

    @property
    def topic(self) -> str:
        return abi.event_topic(self.event_signature)

    def topics(self) -> List[object]:
        return [self.topic, None, None, list(self.schema_ids)]

    def matches(self, log: RawLogEvent) -> bool:
        return log.event_topic == self.topic and log.schema_topic in self.schema_ids


CREATION = StreamSpec(CREATION_STREAM, abi.ATTESTED_EVENT, schemas.CREATION_SCHEMAS)
REVOCATION = StreamSpec(REVOCATION_STREAM, abi.REVOKED_EVENT, schemas.REVOCABLE_SCHEMAS, revocation=True)

STREAMS: Dict[str, StreamSpec] = {spec.name: spec for spec in (CREATION, REVOCATION)}


def stream_for_log(log: RawLogEvent, contract_address: str) -> Optional[StreamSpec]:
    """Classify a raw log into its stream, or None if it is not relevant"""
    if log.address != contract_address.lower():
        return None
    for spec in STREAMS.values():
        if spec.matches(log):
            return spec
    return None


@dataclass
class PollResult:
    stream: str
    status: str = "ok"
    count: int = 0
    last_block: Optional[int] = None
    failed: int = 0

    @property
    def busy(self) -> bool:
        return self.status == "busy"


@dataclass
class PendingResolution:
    """A log whose attestation could not be resolved within the attempt cap"""

    log: RawLogEvent
    stream: str
    passes: int = 0
    enqueued_at: float = field(default_factory=time.time)

    @property
    def key(self) -> Tuple[str, str]:
        # Attested and Revoked logs of one attestation share its uid
        return (self.stream, self.log.uid)


class RequestQueue:
    """Request queue with concurrency limiting"""

    def __init__(self, max_concurrent: int):
        self.max_concurrent = max_concurrent
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.active_count = 0
        self.completed_count = 0
        self.failed_count = 0

    async def enqueue(self, operation):
        """Enqueue and execute operation with concurrency limit"""
        async with self.semaphore:
            self.active_count += 1
            try:
                result = await operation()
                self.completed_count += 1
                return result
            except Exception:
                self.failed_count += 1
                raise
            finally:
                self.active_count -= 1


class StreamPoller:
    """Polls the registry log streams and feeds them to the event processor"""

    def __init__(
        self,
        rpc,
        resolver,
        processor,
        checkpoints,
        contract_address: str,
        concurrency: int = 5,
        log_block_range: int = 0,
        max_reresolve_passes: int = 3,
    ):
        self.rpc = rpc
        self.resolver = resolver
        self.processor = processor
        self.checkpoints = checkpoints
        self.contract_address = contract_address
        self.log_block_range = log_block_range
        self.max_reresolve_passes = max_reresolve_passes

        self.request_queue = RequestQueue(concurrency)
        self._lock = asyncio.Lock()

        # (stream, uid) -> logs waiting for a later re-resolution pass
        self.pending: Dict[Tuple[str, str], PendingResolution] = {}

        self.cycle_count = 0
        self.metrics = {
            'logs_fetched': 0,
            'resolution_timeouts': 0,
            'reresolved': 0,
            'reresolve_dropped': 0,
            'apply_errors': 0,
        }

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run_once(self, stream_name: str) -> PollResult:
        """Run a single poll cycle for one stream"""
        spec = STREAMS[stream_name]
        if self._lock.locked():
            logger.debug(f"[POLLER] Poll already running, skipping {stream_name}")
            return PollResult(stream_name, status="busy")

        async with self._lock:
            return await self._run_stream(spec)

    async def refresh(self) -> List[PollResult]:
        """Poll the creation stream, then the revocation stream, as one cycle"""
        if self._lock.locked():
            logger.debug("[POLLER] Poll already running, skipping refresh")
            return [PollResult(spec.name, status="busy") for spec in STREAMS.values()]

        async with self._lock:
            return [await self._run_stream(spec) for spec in (CREATION, REVOCATION)]

    async def _run_stream(self, spec: StreamSpec) -> PollResult:
        self.cycle_count += 1
        await self.retry_pending_resolutions(spec)

        from_block = await self.checkpoints.start_block(spec.name)
        latest = await self.rpc.get_block_number()
        logger.info(f"[POLLER] {spec.name} update starting from block {from_block}")

        logs = await self.fetch_logs(spec, from_block + 1, latest)
        self.metrics['logs_fetched'] += len(logs)

        result = PollResult(spec.name, count=len(logs))
        if not logs:
            logger.info(f"[POLLER] New {spec.name} logs: 0")
            return result

        resolved = await self.resolve_all(spec, logs)

        for log, attestation in zip(logs, resolved):
            if attestation is None:
                result.failed += 1
                continue
            await self.apply(spec, log, attestation)

        # Failure here propagates; the batch is re-read next cycle
        last_block = max(log.block_number for log in logs)
        result.last_block = await self.checkpoints.advance(spec.name, last_block)

        logger.info(f"[POLLER] New {spec.name} logs: {len(logs)} (checkpoint {result.last_block})")
        return result

    async def fetch_logs(self, spec: StreamSpec, from_block: int, to_block: int) -> List[RawLogEvent]:
        """Fetch logs for [from_block, to_block], chunked, sorted by (block, log index)"""
        if to_block < from_block:
            return []

        step = self.log_block_range if self.log_block_range > 0 else (to_block - from_block + 1)
        logs: List[RawLogEvent] = []

        start = from_block
        while start <= to_block:
            end = min(start + step - 1, to_block)
            logs.extend(await self.rpc.get_logs(
                from_block=start,
                to_block=end,
                address=self.contract_address,
                topics=spec.topics(),
            ))
            start = end + 1

        return sorted((log for log in logs if not log.removed), key=lambda log: log.sort_key)

    async def resolve_all(
        self, spec: StreamSpec, logs: Sequence[RawLogEvent]
    ) -> List[Optional[ResolvedAttestation]]:
        """Resolve logs in parallel; timed-out entries come back as None"""

        async def resolve_one(log: RawLogEvent) -> Optional[ResolvedAttestation]:
            try:
                return await self.request_queue.enqueue(lambda: self.resolver.resolve(log))
            except RESOLUTION_FAILURES as e:
                self.metrics['resolution_timeouts'] += 1
                logger.error(
                    f"[POLLER] Cannot resolve {log.uid} (tx {log.transaction_hash}): {e}; "
                    f"queued for re-resolution"
                )
                self._enqueue_pending(log, spec.name)
                return None

        return list(await asyncio.gather(*(resolve_one(log) for log in logs)))

    async def apply(self, spec: StreamSpec, log: RawLogEvent, attestation: ResolvedAttestation) -> bool:
        """Route a resolved attestation; errors are logged and do not abort the batch"""
        try:
            if spec.revocation:
                return await self.processor.revoke(
                    log.schema_topic or attestation.schema_id,
                    attestation.id,
                    attestation.revocation_time,
                )
            return await self.processor.apply(attestation)
        except Exception as e:
            self.metrics['apply_errors'] += 1
            logger.error(
                f"[POLLER] Error processing {spec.name} attestation {attestation.id} "
                f"(tx {log.transaction_hash}, block {log.block_number}): {e}",
                exc_info=True,
            )
            return False

    def _enqueue_pending(self, log: RawLogEvent, stream: str):
        entry = self.pending.get((stream, log.uid))
        if entry:
            entry.passes += 1
        else:
            entry = PendingResolution(log, stream)
            self.pending[entry.key] = entry

    async def retry_pending_resolutions(self, spec: StreamSpec) -> int:
        """Bounded re-resolution pass for logs that previously timed out"""
        entries = [e for e in self.pending.values() if e.stream == spec.name]
        if not entries:
            return 0

        logger.info(f"[POLLER] Retrying {len(entries)} pending {spec.name} resolutions")
        retried = 0

        for entry in sorted(entries, key=lambda e: e.log.sort_key):
            uid = entry.log.uid
            try:
                attestation = await self.resolver.resolve(entry.log)
            except RESOLUTION_FAILURES:
                entry.passes += 1
                if entry.passes >= self.max_reresolve_passes:
                    del self.pending[entry.key]
                    self.metrics['reresolve_dropped'] += 1
                    logger.error(
                        f"[POLLER] Giving up on attestation {uid} "
                        f"(tx {entry.log.transaction_hash}, block {entry.log.block_number}) "
                        f"after {entry.passes} re-resolution passes"
                    )
                continue

            del self.pending[entry.key]
            await self.apply(spec, entry.log, attestation)
            self.metrics['reresolved'] += 1
            retried += 1

        return retried

    def get_metrics(self) -> Dict[str, int]:
        return {
            **self.metrics,
            'pending_resolutions': len(self.pending),
            'cycles': self.cycle_count,
            'resolves_active': self.request_queue.active_count,
            'resolves_completed': self.request_queue.completed_count,
            'resolves_failed': self.request_queue.failed_count,
        }
