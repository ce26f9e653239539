"""
Minimal ABI word codec for the attestation registry.

Only the layouts the indexer actually reads are supported: the
getAttestation() return tuple and the single-value `string` and `bytes32`
payloads used by the post and username schemas. Every helper raises
ValueError when the buffer does not have the expected shape.
"""

from typing import Any, Dict

from eth_utils import (
    decode_hex,
    encode_hex,
    function_signature_to_4byte_selector,
    keccak,
    to_checksum_address,
)

WORD = 32

ATTESTED_EVENT = "Attested(address,address,bytes32,bytes32)"
REVOKED_EVENT = "Revoked(address,address,bytes32,bytes32)"
GET_ATTESTATION = "getAttestation(bytes32)"


def event_topic(signature: str) -> str:
    """topic0 for an event signature"""
    return encode_hex(keccak(text=signature))


def function_selector(signature: str) -> str:
    return encode_hex(function_signature_to_4byte_selector(signature))


def to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not value or value == "0x":
        return b""
    return decode_hex(value)


def _word(buf: bytes, offset: int) -> bytes:
    if offset < 0 or offset + WORD > len(buf):
        raise ValueError(f"word at offset {offset} out of range (buffer is {len(buf)} bytes)")
    return buf[offset:offset + WORD]


def _uint(word: bytes) -> int:
    return int.from_bytes(word, "big")


def _address(word: bytes) -> str:
    if any(word[:12]):
        raise ValueError("address word has non-zero padding")
    return to_checksum_address("0x" + word[12:].hex())


def _bool(word: bytes) -> bool:
    value = _uint(word)
    if value > 1:
        raise ValueError(f"invalid bool word {value}")
    return value == 1


def _dynamic_bytes(buf: bytes, offset: int) -> bytes:
    length = _uint(_word(buf, offset))
    start = offset + WORD
    if start + length > len(buf):
        raise ValueError(f"dynamic value of {length} bytes overruns buffer")
    return buf[start:start + length]


def encode_call(selector: str, *words: str) -> str:
    """Build eth_call data from a selector and bytes32 arguments"""
    parts = [selector[2:] if selector.startswith("0x") else selector]
    for word in words:
        hex_word = word[2:] if word.startswith("0x") else word
        parts.append(hex_word.rjust(64, "0"))
    return "0x" + "".join(parts)


def decode_string(data: Any) -> str:
    """Decode an ABI-encoded single `string` value"""
    buf = to_bytes(data)
    offset = _uint(_word(buf, 0))
    raw = _dynamic_bytes(buf, offset)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"string is not valid UTF-8: {e}") from e


def decode_bytes32_string(data: Any) -> str:
    """Decode a `bytes32` holding a null-terminated UTF-8 string"""
    word = _word(to_bytes(data), 0)
    if word[-1] != 0:
        raise ValueError("bytes32 string has no null terminator")
    raw = word[:word.index(0)]
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"bytes32 string is not valid UTF-8: {e}") from e


def decode_attestation(data: Any) -> Dict[str, Any]:
    """
    Decode the getAttestation() return value.

    The struct contains a dynamic `bytes` member so it is returned as a single
    dynamic tuple: word 0 is the offset of the tuple head, and the `data`
    offset inside the head is relative to the start of the tuple.
    """
    buf = to_bytes(data)
    base = _uint(_word(buf, 0))

    def field(index: int) -> bytes:
        return _word(buf, base + index * WORD)

    return {
        "uid": encode_hex(field(0)),
        "schema": encode_hex(field(1)),
        "time": _uint(field(2)),
        "expiration_time": _uint(field(3)),
        "revocation_time": _uint(field(4)),
        "ref_uid": encode_hex(field(5)),
        "recipient": _address(field(6)),
        "attester": _address(field(7)),
        "revocable": _bool(field(8)),
        "data": _dynamic_bytes(buf, base + _uint(field(9))),
    }
