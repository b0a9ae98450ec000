"""
Message record entity and its lifecycle.

- LifecycleState: pending -> signed -> verified | rejected, forward only.
- MessageRecord: immutable; transitions return a new record (dataclasses.replace).
- record ids: <lowercased owner>-<epoch ms>-<random suffix>, assigned once at creation.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING

from message_signer.errors import ErrorKind, InvalidTransition, ValidationError

if TYPE_CHECKING:
    from message_signer.verifier import VerificationResult

# Payload-size guard for the signed text, in characters.
MAX_MESSAGE_LENGTH = 10_000
# Per-owner history cap.
HISTORY_LIMIT = 50


class LifecycleState(str, Enum):
    PENDING = "pending"
    SIGNED = "signed"
    VERIFIED = "verified"
    REJECTED = "rejected"


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def normalize_address(address: str) -> str:
    """Lowercase and strip an address; all owner lookups compare this form."""
    return address.strip().lower()


def generate_record_id(owner_address: str, created_at: int) -> str:
    return f"{normalize_address(owner_address)}-{created_at}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class MessageRecord:
    """
    A signed-message record owned by one wallet address.

    Invariants: a pending record has an empty signature and no recovered_signer;
    record_id never changes across transitions.
    """

    record_id: str
    owner_address: str
    message_text: str
    created_at: int
    lifecycle_state: LifecycleState = LifecycleState.PENDING
    signature: str = ""
    recovered_signer: str | None = None
    error: ErrorKind | None = None
    expiry: int | None = None

    def __post_init__(self) -> None:
        if self.lifecycle_state is LifecycleState.PENDING and (self.signature or self.recovered_signer):
            raise InvalidTransition("pending record must not carry a signature or recovered signer")

    @classmethod
    def create(
        cls,
        message_text: str,
        owner_address: str,
        created_at: int | None = None,
        expiry: int | None = None,
    ) -> MessageRecord:
        """
        Build a new pending record with a fresh record id.

        Raises:
            ValidationError: empty owner/message, or message longer than MAX_MESSAGE_LENGTH.
        """
        if not owner_address or not owner_address.strip():
            raise ValidationError("owner address is required")
        if not message_text:
            raise ValidationError("message text is required")
        if len(message_text) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"message text exceeds {MAX_MESSAGE_LENGTH} characters")
        ts = now_ms() if created_at is None else created_at
        return cls(
            record_id=generate_record_id(owner_address, ts),
            owner_address=owner_address.strip(),
            message_text=message_text,
            created_at=ts,
            expiry=expiry,
        )

    @property
    def owner_key(self) -> str:
        return normalize_address(self.owner_address)

    @property
    def is_final(self) -> bool:
        return self.lifecycle_state in (LifecycleState.VERIFIED, LifecycleState.REJECTED)

    def with_signature(self, signature: str) -> MessageRecord:
        """pending -> signed."""
        if self.lifecycle_state is not LifecycleState.PENDING:
            raise InvalidTransition(f"cannot sign a record in state {self.lifecycle_state.value}")
        return replace(self, lifecycle_state=LifecycleState.SIGNED, signature=signature)

    def with_verification(self, result: VerificationResult) -> MessageRecord:
        """signed -> verified (valid) or rejected (invalid, error kind attached)."""
        if self.lifecycle_state is not LifecycleState.SIGNED:
            raise InvalidTransition(f"cannot verify a record in state {self.lifecycle_state.value}")
        if result.is_valid:
            return replace(
                self,
                lifecycle_state=LifecycleState.VERIFIED,
                recovered_signer=result.recovered_address,
                error=None,
            )
        return replace(
            self,
            lifecycle_state=LifecycleState.REJECTED,
            recovered_signer=result.recovered_address or None,
            error=result.error,
        )
