"""
Domain records shared by the resolver, decoder, dispatcher and poller.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

ZERO_BYTES32 = "0x" + "00" * 32
ZERO_ADDRESS = "0x" + "00" * 20

# Checkpoint row names, one per logical stream
CREATION_STREAM = "latestAttestationBlockNum"
REVOCATION_STREAM = "latestAttestationRevocationBlockNum"


def parse_quantity(value: Any) -> int:
    """Parse a JSON-RPC hex quantity (or plain int) into an int"""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    value = str(value)
    if value.startswith(("0x", "0X")):
        return int(value, 16) if len(value) > 2 else 0
    return int(value)


@dataclass(frozen=True)
class RawLogEvent:
    """A log entry as returned by eth_getLogs / eth_subscribe"""

    address: str
    topics: Tuple[str, ...]
    data: str
    block_number: int
    transaction_hash: str
    log_index: int = 0
    removed: bool = False

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> "RawLogEvent":
        return cls(
            address=(raw.get("address") or "").lower(),
            topics=tuple(t.lower() for t in raw.get("topics") or []),
            data=raw.get("data") or "0x",
            block_number=parse_quantity(raw.get("blockNumber")),
            transaction_hash=(raw.get("transactionHash") or "").lower(),
            log_index=parse_quantity(raw.get("logIndex")),
            removed=bool(raw.get("removed", False)),
        )

    @property
    def event_topic(self) -> Optional[str]:
        return self.topics[0] if self.topics else None

    @property
    def schema_topic(self) -> Optional[str]:
        # Attested/Revoked index the schema uid as the third indexed argument
        return self.topics[3] if len(self.topics) > 3 else None

    @property
    def uid(self) -> str:
        """Attestation uid carried in the (non-indexed) data word"""
        data = self.data[2:] if self.data.startswith("0x") else self.data
        return "0x" + data[:64].rjust(64, "0")

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class ResolvedAttestation:
    """Fully materialized attestation read back from the registry"""

    id: str
    schema_id: str
    data: bytes
    attester: str
    recipient: str
    ref_id: str = ZERO_BYTES32
    time: int = 0
    expiration_time: int = 0
    revocation_time: int = 0
    revocable: bool = False
    txid: str = ""
    time_created: int = field(default_factory=lambda: int(time.time()))

    @property
    def revoked(self) -> bool:
        return self.revocation_time != 0 and self.revocation_time < int(time.time())

    @property
    def has_ref(self) -> bool:
        return self.ref_id != ZERO_BYTES32
