"""Tests for the registry ABI codec."""

import pytest

from attestation_indexer import abi
from attestation_indexer.models import ZERO_BYTES32
from attestation_indexer.schemas import POST_SCHEMA
from tests.factories import ALICE, BOB, encode_attestation, encode_bytes32_string, encode_string, uid


def test_attested_event_topic():
    assert abi.event_topic(abi.ATTESTED_EVENT) == (
        "0x8bf46bf4cfd674fa735a3d63ec1c9ad4153f033c290341f3a588b75685141b35"
    )


def test_function_selector_is_four_bytes():
    selector = abi.function_selector(abi.GET_ATTESTATION)
    assert selector.startswith("0x")
    assert len(selector) == 10


def test_encode_call_pads_arguments():
    data = abi.encode_call("0xa3112a64", "0x01")
    assert data == "0xa3112a64" + "0" * 63 + "1"


def test_decode_attestation_reads_all_fields():
    payload = encode_string("hello world")
    result = encode_attestation(
        attestation_uid=uid(7),
        schema=POST_SCHEMA,
        attester=ALICE,
        recipient=BOB,
        data=payload,
        ref_uid=uid(3),
        time=1700000123,
        revocation_time=1700000456,
        revocable=True,
    )

    fields = abi.decode_attestation(result)

    assert fields["uid"] == uid(7)
    assert fields["schema"] == POST_SCHEMA
    assert fields["attester"] == ALICE
    assert fields["recipient"] == BOB
    assert fields["ref_uid"] == uid(3)
    assert fields["time"] == 1700000123
    assert fields["expiration_time"] == 0
    assert fields["revocation_time"] == 1700000456
    assert fields["revocable"] is True
    assert fields["data"] == payload


def test_decode_attestation_empty_record():
    fields = abi.decode_attestation(encode_attestation())
    assert fields["uid"] == ZERO_BYTES32
    assert fields["data"] == b""


def test_decode_attestation_truncated_buffer():
    result = encode_attestation(attestation_uid=uid(1), data=b"\x01" * 40)
    with pytest.raises(ValueError):
        abi.decode_attestation(result[:200])


def test_address_with_dirty_padding_is_rejected():
    with pytest.raises(ValueError):
        abi._address(b"\x01" + b"\x00" * 31)


def test_bool_out_of_range_is_rejected():
    with pytest.raises(ValueError):
        abi._bool((2).to_bytes(32, "big"))


def test_decode_string():
    assert abi.decode_string(encode_string("gm https://example.com")) == "gm https://example.com"
    assert abi.decode_string("0x" + encode_string("").hex()) == ""


def test_decode_string_length_overruns_buffer():
    encoded = encode_string("hello")
    # Claim 64 bytes of content
    broken = encoded[:32] + (64).to_bytes(32, "big") + encoded[64:]
    with pytest.raises(ValueError):
        abi.decode_string(broken)


def test_decode_string_invalid_utf8():
    broken = (32).to_bytes(32, "big") + (2).to_bytes(32, "big") + b"\xff\xfe" + b"\x00" * 30
    with pytest.raises(ValueError):
        abi.decode_string(broken)


def test_decode_bytes32_string():
    assert abi.decode_bytes32_string(encode_bytes32_string("alice")) == "alice"
    assert abi.decode_bytes32_string(b"\x00" * 32) == ""


def test_decode_bytes32_string_requires_terminator():
    with pytest.raises(ValueError):
        abi.decode_bytes32_string(b"a" * 32)


def test_decode_bytes32_string_too_short():
    with pytest.raises(ValueError):
        abi.decode_bytes32_string(b"alice")
