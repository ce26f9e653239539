"""Tests for schema decoding into typed attestation variants."""

import pytest

from attestation_indexer import schemas
from attestation_indexer.errors import DecodeError
from attestation_indexer.models import ResolvedAttestation
from tests.factories import ALICE, BOB, encode_bytes32_string, encode_string, uid


def make_attestation(schema_id, data=b"", ref_id=None, **kwargs):
    return ResolvedAttestation(
        id=uid(1),
        schema_id=schema_id,
        data=data,
        attester=kwargs.pop("attester", ALICE),
        recipient=kwargs.pop("recipient", BOB),
        ref_id=ref_id or "0x" + "00" * 32,
        time=1700000000,
        **kwargs,
    )


def test_post_decodes_content():
    decoded = schemas.decode(make_attestation(schemas.POST_SCHEMA, encode_string("first post")))
    assert isinstance(decoded, schemas.PostAttestation)
    assert decoded.content == "first post"


def test_like_targets_ref_id():
    decoded = schemas.decode(make_attestation(schemas.LIKE_SCHEMA, ref_id=uid(9)))
    assert isinstance(decoded, schemas.LikeAttestation)
    assert decoded.post_id == uid(9)


def test_follow_maps_attester_and_recipient():
    decoded = schemas.decode(make_attestation(schemas.FOLLOW_SCHEMA))
    assert isinstance(decoded, schemas.FollowAttestation)
    assert decoded.follower_id == ALICE
    assert decoded.following_id == BOB


def test_username_decodes_bytes32():
    decoded = schemas.decode(make_attestation(schemas.USERNAME_SCHEMA, encode_bytes32_string("alice")))
    assert isinstance(decoded, schemas.UsernameAttestation)
    assert decoded.name == "alice"


def test_schema_ids_are_case_insensitive():
    decoded = schemas.decode(make_attestation(schemas.POST_SCHEMA.upper().replace("0X", "0x"), encode_string("x")))
    assert isinstance(decoded, schemas.PostAttestation)


def test_unknown_schema_is_unknown_variant():
    decoded = schemas.decode(make_attestation(uid(42)))
    assert isinstance(decoded, schemas.UnknownAttestation)
    assert schemas.schema_name(uid(42)) == "unknown"
    assert not schemas.is_known(uid(42))


def test_malformed_post_payload_raises_decode_error():
    with pytest.raises(DecodeError) as exc_info:
        schemas.decode(make_attestation(schemas.POST_SCHEMA, b"\x01\x02"))
    assert exc_info.value.schema_id == schemas.POST_SCHEMA


def test_decode_payload_unknown_schema():
    with pytest.raises(DecodeError):
        schemas.decode_payload(uid(42), b"")


def test_decode_payload_without_layout():
    assert schemas.decode_payload(schemas.LIKE_SCHEMA, b"anything") == {}
