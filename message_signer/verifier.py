"""
EIP-191 personal-sign verification.

verify_signature() is pure and never raises: malformed or adversarial signatures
are expected input and come back as VerificationResult(is_valid=False, error=...).
Recovery uses eth-account: "\\x19Ethereum Signed Message:\\n" + len(utf-8 bytes) + message,
keccak-256, then secp256k1 public key recovery from (r, s, v).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import is_address, to_checksum_address as _to_checksum_address

from message_signer.errors import ErrorKind

logger = logging.getLogger(__name__)

SIGNATURE_BYTES = 65
_SIGNATURE_RE = re.compile(r"^(0x)?[0-9a-fA-F]{%d}$" % (SIGNATURE_BYTES * 2))


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    recovered_address: str = ""
    error: ErrorKind | None = None


def is_valid_signature(signature: str) -> bool:
    """True if signature is exactly 65 bytes of hex (130 digits), 0x prefix optional."""
    return bool(signature) and _SIGNATURE_RE.match(signature) is not None


def is_valid_address(address: str) -> bool:
    return bool(address) and is_address(address)


def to_checksum_address(address: str) -> str:
    """EIP-55 mixed-case form of an address. Raises ValueError if address is invalid."""
    if not is_valid_address(address):
        raise ValueError(f"invalid address: {address!r}")
    return _to_checksum_address(address)


def verify_signature(
    message: str,
    signature: str,
    expected_address: str | None = None,
) -> VerificationResult:
    """
    Recover the signer of an EIP-191 personal message and optionally match it.

    Args:
        message: The exact text that was signed.
        signature: 65-byte signature as hex, with or without 0x.
        expected_address: If given, the recovered address must equal it (case-insensitive).

    Returns:
        VerificationResult; recovered_address is lowercased. Error kinds:
        MissingInput, InvalidSignatureFormat, RecoveryFailed, AddressMismatch.
    """
    if not message or not signature:
        return VerificationResult(is_valid=False, error=ErrorKind.MISSING_INPUT)
    if not is_valid_signature(signature):
        return VerificationResult(is_valid=False, error=ErrorKind.INVALID_SIGNATURE_FORMAT)

    raw = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=raw)
    except Exception as e:  # bad curve point, invalid v, s out of range
        logger.debug("signature recovery failed: %s", e)
        return VerificationResult(is_valid=False, error=ErrorKind.RECOVERY_FAILED)

    recovered = recovered.lower()
    if expected_address is not None and recovered != expected_address.strip().lower():
        return VerificationResult(is_valid=False, recovered_address=recovered, error=ErrorKind.ADDRESS_MISMATCH)
    logger.debug("signature verified for %s (message %r)", recovered, message[:50])
    return VerificationResult(is_valid=True, recovered_address=recovered)
