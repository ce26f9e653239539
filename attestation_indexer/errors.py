"""
Error types raised by the attestation indexer.

Failures local to a single attestation (ResolutionTimeout, DecodeError,
ReferentialGap, SideEffectFailure) are logged and skipped by the callers;
they never abort a poll batch.
"""

from typing import Optional


class IndexerError(Exception):
    """Base class for indexer errors"""


class ConfigError(IndexerError):
    """Missing or invalid configuration"""


class RPCError(IndexerError):
    """JSON-RPC request failed after all retries"""

    def __init__(self, method: str, message: str):
        super().__init__(f"{method}: {message}")
        self.method = method


class ResolutionTimeout(IndexerError):
    """Upstream never returned attestation content for a logged uid"""

    def __init__(self, uid: str, attempts: int, tx_hash: Optional[str] = None):
        super().__init__(f"Attestation {uid} not visible after {attempts} attempts (tx {tx_hash})")
        self.uid = uid
        self.attempts = attempts
        self.tx_hash = tx_hash


class DecodeError(IndexerError):
    """Payload bytes do not match the layout of the claimed schema"""

    def __init__(self, schema_id: str, message: str):
        super().__init__(f"Cannot decode payload for schema {schema_id}: {message}")
        self.schema_id = schema_id


class ReferentialGap(IndexerError):
    """An attestation references an entity that is not indexed locally"""

    def __init__(self, attestation_id: str, missing_id: str, kind: str):
        super().__init__(f"{kind} {missing_id} referenced by {attestation_id} does not exist")
        self.attestation_id = attestation_id
        self.missing_id = missing_id
        self.kind = kind


class SideEffectFailure(IndexerError):
    """Best-effort enrichment (link preview) failed"""
