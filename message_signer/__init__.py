"""
message-signer: sign, verify and persist wallet-signed messages.

Verification (EIP-191 personal-sign, secp256k1 recovery):
  verify_signature, VerificationResult, is_valid_signature, is_valid_address, to_checksum_address

Records:
  MessageRecord, LifecycleState, RecordHistory, HISTORY_LIMIT, MAX_MESSAGE_LENGTH

Persistence (managed HTTP store / DynamoDB / local fallback):
  MessageStore, HttpMessageStore, DynamoDBMessageStore, LocalMessageStore,
  create_message_store_from_config, StorageRouter, StorageInfo, create_router_from_config

Configuration and logging:
  StorageConfig, ProviderConfig, load_config, setup_logging

Pipeline:
  MessagePipeline, Signer, SignOutcome, LocalAccountSigner

Errors:
  ErrorKind, MessageSignerError, ValidationError, TransportError, BackendRejected,
  SignerUnavailable, InvalidTransition, ConfigError
"""

from message_signer.config import ProviderConfig, StorageConfig, load_config
from message_signer.errors import (
    BackendRejected,
    ConfigError,
    ErrorKind,
    InvalidTransition,
    MessageSignerError,
    SignerUnavailable,
    TransportError,
    ValidationError,
)
from message_signer.history import RecordHistory
from message_signer.log import setup_logging
from message_signer.models import HISTORY_LIMIT, MAX_MESSAGE_LENGTH, LifecycleState, MessageRecord
from message_signer.pipeline import MessagePipeline, Signer, SignOutcome
from message_signer.router import StorageInfo, StorageRouter, create_router_from_config
from message_signer.signers import LocalAccountSigner
from message_signer.storage import (
    DynamoDBMessageStore,
    HttpMessageStore,
    LocalMessageStore,
    MessageStore,
    create_message_store_from_config,
)
from message_signer.verifier import (
    VerificationResult,
    is_valid_address,
    is_valid_signature,
    to_checksum_address,
    verify_signature,
)

__all__ = [
    "BackendRejected",
    "ConfigError",
    "DynamoDBMessageStore",
    "ErrorKind",
    "HISTORY_LIMIT",
    "HttpMessageStore",
    "InvalidTransition",
    "LifecycleState",
    "LocalAccountSigner",
    "LocalMessageStore",
    "MAX_MESSAGE_LENGTH",
    "MessagePipeline",
    "MessageRecord",
    "MessageSignerError",
    "MessageStore",
    "ProviderConfig",
    "RecordHistory",
    "SignOutcome",
    "Signer",
    "SignerUnavailable",
    "StorageConfig",
    "StorageInfo",
    "StorageRouter",
    "TransportError",
    "ValidationError",
    "VerificationResult",
    "create_message_store_from_config",
    "create_router_from_config",
    "is_valid_address",
    "is_valid_signature",
    "load_config",
    "setup_logging",
    "to_checksum_address",
    "verify_signature",
]
