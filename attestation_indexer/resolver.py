"""
Attestation resolution.

The registry exposes attestation content asynchronously relative to log
visibility, so a read right after the log may still return an empty record
(zero uid). The resolver polls with a fixed delay until the record appears,
up to a bounded number of attempts.
"""

import asyncio
import logging
from typing import Optional

from attestation_indexer import abi
from attestation_indexer.errors import ResolutionTimeout
from attestation_indexer.models import ZERO_BYTES32, RawLogEvent, ResolvedAttestation

logger = logging.getLogger(__name__)

GET_ATTESTATION_SELECTOR = abi.function_selector(abi.GET_ATTESTATION)


class AttestationResolver:
    """Reads full attestation records from the registry contract"""

    def __init__(
        self,
        rpc,
        contract_address: str,
        poll_interval: float = 0.5,
        max_attempts: int = 20,
    ):
        self.rpc = rpc
        self.contract_address = contract_address
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.resolved_count = 0
        self.timeout_count = 0

    async def fetch(self, uid: str, txid: str = "") -> Optional[ResolvedAttestation]:
        """Single read; returns None while the registry still reports the zero uid"""
        result = await self.rpc.eth_call(
            self.contract_address,
            abi.encode_call(GET_ATTESTATION_SELECTOR, uid),
        )
        fields = abi.decode_attestation(result)

        if fields["uid"] == ZERO_BYTES32:
            return None

        return ResolvedAttestation(
            id=fields["uid"],
            schema_id=fields["schema"],
            data=fields["data"],
            attester=fields["attester"],
            recipient=fields["recipient"],
            ref_id=fields["ref_uid"],
            time=fields["time"],
            expiration_time=fields["expiration_time"],
            revocation_time=fields["revocation_time"],
            revocable=fields["revocable"],
            txid=txid,
        )

    async def resolve(self, log: RawLogEvent) -> ResolvedAttestation:
        """Resolve the attestation referenced by a log, retrying until visible"""
        uid = log.uid

        for attempt in range(1, self.max_attempts + 1):
            attestation = await self.fetch(uid, log.transaction_hash)
            if attestation is not None:
                self.resolved_count += 1
                return attestation

            if attempt < self.max_attempts:
                logger.info(f"[RESOLVER] Delaying attestation poll for {uid} after try #{attempt}...")
                await asyncio.sleep(self.poll_interval)

        self.timeout_count += 1
        raise ResolutionTimeout(uid, self.max_attempts, log.transaction_hash)
