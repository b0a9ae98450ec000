"""
Error taxonomy for signing, verification and persistence.

- ErrorKind: stable string codes shared by results and exceptions.
- Verification problems are returned as data (VerificationResult.error), never raised.
- TransportError advances the storage fallback chain; BackendRejected is surfaced as-is.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    MISSING_INPUT = "MissingInput"
    INVALID_SIGNATURE_FORMAT = "InvalidSignatureFormat"
    RECOVERY_FAILED = "RecoveryFailed"
    ADDRESS_MISMATCH = "AddressMismatch"
    TRANSPORT_ERROR = "TransportError"
    BACKEND_REJECTED = "BackendRejected"
    SIGNER_UNAVAILABLE = "SignerUnavailable"


class MessageSignerError(Exception):
    """Base exception for all message-signer errors."""

    kind: ErrorKind | None = None

    def __init__(self, message: str, kind: ErrorKind | None = None):
        self.message = message
        if kind is not None:
            self.kind = kind
        super().__init__(message)


class ValidationError(MessageSignerError):
    """Raised when required input is missing or out of bounds."""

    kind = ErrorKind.MISSING_INPUT


class TransportError(MessageSignerError):
    """Provider unreachable (network down, timeout, 5xx). Triggers fallback."""

    kind = ErrorKind.TRANSPORT_ERROR

    def __init__(self, message: str, provider: str | None = None):
        self.provider = provider
        super().__init__(message)


class BackendRejected(MessageSignerError):
    """Provider reachable but refused the request (quota, bad request, auth)."""

    kind = ErrorKind.BACKEND_REJECTED

    def __init__(self, message: str, provider: str | None = None, status_code: int | None = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class SignerUnavailable(MessageSignerError):
    """Wallet not connected, user declined, or signing capability missing."""

    kind = ErrorKind.SIGNER_UNAVAILABLE


class InvalidTransition(MessageSignerError):
    """A lifecycle transition was attempted out of order."""


class ConfigError(MessageSignerError):
    """Storage configuration is malformed."""
