"""
Schema decoding.

Maps registry schema uids to payload layouts and turns a resolved
attestation into one of a closed set of typed variants, so the dispatcher
matches on a finite set of types rather than comparing schema ids.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Union

from attestation_indexer import abi
from attestation_indexer.errors import DecodeError
from attestation_indexer.models import ResolvedAttestation

POST_SCHEMA = "0xbbea47804168571b26f0ea2962bfbd1b11184bc0a438724c890151201eb60128"
LIKE_SCHEMA = "0x33e9094830a5cba5554d1954310e4fbed2ef5f859ec1404619adea4207f391fd"
USERNAME_SCHEMA = "0x1c12bac4f230477c87449a101f5f9d6ca1c492866355c0a5e27026753e5ebf40"
FOLLOW_SCHEMA = "0x4915a98a3dc10c71027c01e59cb39415d4c04fdcdde539d6d04fc812af86d8dd"

SCHEMA_NAMES: Dict[str, str] = {
    POST_SCHEMA: "post",
    LIKE_SCHEMA: "like",
    USERNAME_SCHEMA: "username",
    FOLLOW_SCHEMA: "follow",
}

# Schemas whose creation events are indexed
CREATION_SCHEMAS: Tuple[str, ...] = (POST_SCHEMA, LIKE_SCHEMA, USERNAME_SCHEMA, FOLLOW_SCHEMA)

# Schemas whose entities carry a revoked_at column
REVOCABLE_SCHEMAS: Tuple[str, ...] = (POST_SCHEMA, LIKE_SCHEMA, FOLLOW_SCHEMA)

FIELD_DECODERS: Dict[str, Callable[[Any], Any]] = {
    "string": abi.decode_string,
    "bytes32-string": abi.decode_bytes32_string,
}

# schema uid -> (field name, field type); None means the payload is unused
SCHEMA_LAYOUTS: Dict[str, Optional[Tuple[str, str]]] = {
    POST_SCHEMA: ("content", "string"),
    USERNAME_SCHEMA: ("name", "bytes32-string"),
    LIKE_SCHEMA: None,
    FOLLOW_SCHEMA: None,
}


@dataclass(frozen=True)
class PostAttestation:
    attestation: ResolvedAttestation
    content: str


@dataclass(frozen=True)
class LikeAttestation:
    attestation: ResolvedAttestation
    post_id: str


@dataclass(frozen=True)
class FollowAttestation:
    attestation: ResolvedAttestation
    follower_id: str
    following_id: str


@dataclass(frozen=True)
class UsernameAttestation:
    attestation: ResolvedAttestation
    name: str


@dataclass(frozen=True)
class UnknownAttestation:
    attestation: ResolvedAttestation


DecodedAttestation = Union[
    PostAttestation,
    LikeAttestation,
    FollowAttestation,
    UsernameAttestation,
    UnknownAttestation,
]


def normalize(schema_id: Optional[str]) -> str:
    return (schema_id or "").lower()


def is_known(schema_id: Optional[str]) -> bool:
    return normalize(schema_id) in SCHEMA_NAMES


def schema_name(schema_id: Optional[str]) -> str:
    return SCHEMA_NAMES.get(normalize(schema_id), "unknown")


def decode_payload(schema_id: str, raw: Any) -> Dict[str, Any]:
    """Decode raw payload bytes into the field set of a schema"""
    schema_id = normalize(schema_id)
    if schema_id not in SCHEMA_LAYOUTS:
        raise DecodeError(schema_id, "unknown schema")

    layout = SCHEMA_LAYOUTS[schema_id]
    if layout is None:
        return {}

    name, field_type = layout
    try:
        return {name: FIELD_DECODERS[field_type](raw)}
    except ValueError as e:
        raise DecodeError(schema_id, str(e)) from e


def decode(attestation: ResolvedAttestation) -> DecodedAttestation:
    """Build the typed variant for a resolved attestation"""
    schema_id = normalize(attestation.schema_id)

    if schema_id == POST_SCHEMA:
        fields = decode_payload(schema_id, attestation.data)
        return PostAttestation(attestation, content=fields["content"])

    if schema_id == LIKE_SCHEMA:
        return LikeAttestation(attestation, post_id=attestation.ref_id)

    if schema_id == FOLLOW_SCHEMA:
        return FollowAttestation(
            attestation,
            follower_id=attestation.attester,
            following_id=attestation.recipient,
        )

    if schema_id == USERNAME_SCHEMA:
        fields = decode_payload(schema_id, attestation.data)
        return UsernameAttestation(attestation, name=fields["name"])

    return UnknownAttestation(attestation)
