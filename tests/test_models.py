"""Module tests: message_signer.models (record creation, lifecycle transitions)."""

import pytest

from message_signer.errors import ErrorKind, InvalidTransition, ValidationError
from message_signer.models import (
    MAX_MESSAGE_LENGTH,
    LifecycleState,
    MessageRecord,
    generate_record_id,
    normalize_address,
)
from message_signer.verifier import VerificationResult

OWNER = "0xAbC0000000000000000000000000000000000001"


def test_lifecycle_state_values():
    assert LifecycleState.PENDING.value == "pending"
    assert LifecycleState.SIGNED.value == "signed"
    assert LifecycleState.VERIFIED.value == "verified"
    assert LifecycleState.REJECTED.value == "rejected"


def test_create_pending_record():
    record = MessageRecord.create("hello", OWNER, created_at=1_700_000_000_000)
    assert record.lifecycle_state is LifecycleState.PENDING
    assert record.signature == ""
    assert record.recovered_signer is None
    assert record.created_at == 1_700_000_000_000
    assert record.record_id.startswith(OWNER.lower() + "-1700000000000-")
    assert record.owner_key == OWNER.lower()


def test_record_ids_are_unique():
    ids = {generate_record_id(OWNER, 1) for _ in range(200)}
    assert len(ids) == 200


def test_normalize_address():
    assert normalize_address("  0xABC ") == "0xabc"


def test_create_rejects_empty_message_and_owner():
    with pytest.raises(ValidationError):
        MessageRecord.create("", OWNER)
    with pytest.raises(ValidationError):
        MessageRecord.create("hi", "  ")


def test_message_length_guard():
    MessageRecord.create("x" * MAX_MESSAGE_LENGTH, OWNER)
    with pytest.raises(ValidationError) as exc:
        MessageRecord.create("x" * (MAX_MESSAGE_LENGTH + 1), OWNER)
    assert exc.value.kind is ErrorKind.MISSING_INPUT


def test_pending_record_cannot_carry_signature():
    with pytest.raises(InvalidTransition):
        MessageRecord(record_id="r", owner_address=OWNER, message_text="m", created_at=1, signature="0x00")


def test_sign_then_verify():
    record = MessageRecord.create("hello", OWNER)
    signed = record.with_signature("0xsig")
    assert signed.lifecycle_state is LifecycleState.SIGNED
    assert signed.record_id == record.record_id
    verified = signed.with_verification(VerificationResult(is_valid=True, recovered_address=OWNER.lower()))
    assert verified.lifecycle_state is LifecycleState.VERIFIED
    assert verified.recovered_signer == OWNER.lower()
    assert verified.is_final
    # original objects are untouched
    assert record.lifecycle_state is LifecycleState.PENDING


def test_failed_verification_rejects_with_error_kind():
    signed = MessageRecord.create("hello", OWNER).with_signature("0xsig")
    rejected = signed.with_verification(
        VerificationResult(is_valid=False, recovered_address="0xdef", error=ErrorKind.ADDRESS_MISMATCH)
    )
    assert rejected.lifecycle_state is LifecycleState.REJECTED
    assert rejected.error is ErrorKind.ADDRESS_MISMATCH
    assert rejected.recovered_signer == "0xdef"
    format_error = signed.with_verification(
        VerificationResult(is_valid=False, error=ErrorKind.INVALID_SIGNATURE_FORMAT)
    )
    assert format_error.recovered_signer is None


def test_transitions_are_forward_only():
    record = MessageRecord.create("hello", OWNER)
    with pytest.raises(InvalidTransition):
        record.with_verification(VerificationResult(is_valid=True, recovered_address="0x1"))
    signed = record.with_signature("0xsig")
    with pytest.raises(InvalidTransition):
        signed.with_signature("0xother")
    verified = signed.with_verification(VerificationResult(is_valid=True, recovered_address="0x1"))
    with pytest.raises(InvalidTransition):
        verified.with_verification(VerificationResult(is_valid=False, error=ErrorKind.RECOVERY_FAILED))
