"""Tests for the record wire format and the local per-owner layout."""

import json

import pytest

from message_signer.errors import ErrorKind
from message_signer.models import LifecycleState, MessageRecord
from message_signer.serialization import (
    parse_layout,
    parse_records,
    record_from_dict,
    record_to_dict,
    serialize_layout,
)
from message_signer.verifier import VerificationResult

OWNER = "0xAbC0000000000000000000000000000000000001"


def test_pending_record_uses_wire_field_names() -> None:
    record = MessageRecord.create("hello", OWNER, created_at=42)
    assert record_to_dict(record) == {
        "recordId": record.record_id,
        "ownerAddress": OWNER,
        "messageText": "hello",
        "signature": "",
        "createdAt": 42,
        "lifecycleState": "pending",
    }


def test_rejected_record_carries_optional_fields() -> None:
    record = (
        MessageRecord.create("hello", OWNER, created_at=42, expiry=99)
        .with_signature("0xsig")
        .with_verification(VerificationResult(False, "0xdef", ErrorKind.ADDRESS_MISMATCH))
    )
    data = record_to_dict(record)
    assert data["recoveredSigner"] == "0xdef"
    assert data["error"] == "AddressMismatch"
    assert data["expiry"] == 99
    assert record_from_dict(data) == record


def test_record_from_dict_defaults() -> None:
    record = record_from_dict(
        {"recordId": "r1", "ownerAddress": OWNER, "messageText": "m", "createdAt": "7", "signature": None}
    )
    assert record.lifecycle_state is LifecycleState.PENDING
    assert record.signature == ""
    assert record.created_at == 7


def test_record_from_dict_rejects_unknown_state() -> None:
    with pytest.raises(ValueError):
        record_from_dict(
            {"recordId": "r1", "ownerAddress": OWNER, "messageText": "m", "createdAt": 1, "lifecycleState": "lost"}
        )
    with pytest.raises(KeyError):
        record_from_dict({"ownerAddress": OWNER})


def test_parse_records_accepts_array_and_envelope() -> None:
    record = MessageRecord.create("hello", OWNER, created_at=1)
    body = [record_to_dict(record)]
    assert parse_records(json.dumps(body)) == [record]
    assert parse_records(json.dumps({"success": True, "data": body}).encode("utf-8")) == [record]
    assert parse_records(b'{"success": true, "data": null}') == []
    with pytest.raises(ValueError):
        parse_records(b'"nope"')


def test_layout_keeps_order_and_unicode() -> None:
    newer = MessageRecord.create("签名", OWNER, created_at=2)
    older = MessageRecord.create("hello", OWNER, created_at=1)
    raw = serialize_layout({OWNER.lower(): [newer, older]})
    assert "签名" in raw.decode("utf-8")
    assert parse_layout(raw) == {OWNER.lower(): [newer, older]}


def test_parse_layout_empty_and_invalid() -> None:
    assert parse_layout(b"") == {}
    assert parse_layout(b"  \n") == {}
    with pytest.raises(ValueError):
        parse_layout(b"[]")


@pytest.mark.parametrize(
    "item",
    [
        1,
        "record",
        {"recordId": "r1", "ownerAddress": OWNER, "messageText": "m", "createdAt": None},
        {"recordId": "r1", "ownerAddress": OWNER, "messageText": "m", "createdAt": 1, "signature": "0xsig"},
    ],
)
def test_malformed_record_is_value_error(item) -> None:
    with pytest.raises(ValueError):
        record_from_dict(item)
    with pytest.raises(ValueError):
        parse_records(json.dumps([item]))


def test_parse_layout_rejects_non_list_owner_entry() -> None:
    with pytest.raises(ValueError):
        parse_layout(b'{"0xabc": {"a": 1}}')
