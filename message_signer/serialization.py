"""
JSON wire format for message records.

- Record fields use the wire names recordId, ownerAddress, messageText, signature,
  createdAt, lifecycleState; recoveredSigner, error and expiry are written only when set.
- Local layout: {"<lowercased owner>": [record, ...]} with newest first.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from message_signer.errors import ErrorKind, InvalidTransition
from message_signer.models import LifecycleState, MessageRecord


def record_to_dict(record: MessageRecord) -> dict[str, Any]:
    """Encode a record to its JSON-ready wire dict."""
    data: dict[str, Any] = {
        "recordId": record.record_id,
        "ownerAddress": record.owner_address,
        "messageText": record.message_text,
        "signature": record.signature,
        "createdAt": record.created_at,
        "lifecycleState": record.lifecycle_state.value,
    }
    if record.recovered_signer:
        data["recoveredSigner"] = record.recovered_signer
    if record.error is not None:
        data["error"] = record.error.value
    if record.expiry is not None:
        data["expiry"] = record.expiry
    return data


def record_from_dict(data: dict[str, Any]) -> MessageRecord:
    """
    Decode a wire dict into a MessageRecord.

    Raises KeyError for missing required fields and ValueError for anything else
    malformed: a non-object item, non-numeric timestamps, unknown lifecycle states
    or error kinds, or a field combination the lifecycle does not allow.
    """
    if not isinstance(data, Mapping):
        raise ValueError(f"expected a record object, got {type(data).__name__}")
    error = data.get("error")
    expiry = data.get("expiry")
    try:
        return MessageRecord(
            record_id=str(data["recordId"]),
            owner_address=str(data["ownerAddress"]),
            message_text=str(data["messageText"]),
            signature=str(data.get("signature") or ""),
            created_at=int(data["createdAt"]),
            lifecycle_state=LifecycleState(data.get("lifecycleState") or LifecycleState.PENDING.value),
            recovered_signer=data.get("recoveredSigner") or None,
            error=ErrorKind(error) if error else None,
            expiry=int(expiry) if expiry is not None else None,
        )
    except (TypeError, InvalidTransition) as e:
        raise ValueError(f"malformed record {data.get('recordId')!r}: {e}") from e


def parse_records(raw: bytes | str) -> list[MessageRecord]:
    """Decode a JSON array of records. Accepts the {"data": [...]} envelope as well."""
    payload = json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
    if isinstance(payload, dict):
        payload = payload.get("data") or []
    if not isinstance(payload, list):
        raise ValueError("expected a JSON array of records")
    return [record_from_dict(item) for item in payload]


def serialize_layout(layout: dict[str, list[MessageRecord]]) -> bytes:
    """Encode the local per-owner layout."""
    body = {owner: [record_to_dict(r) for r in records] for owner, records in layout.items()}
    return json.dumps(body, ensure_ascii=False, indent=2).encode("utf-8")


def parse_layout(raw: bytes) -> dict[str, list[MessageRecord]]:
    if not raw.strip():
        return {}
    body = json.loads(raw.decode("utf-8"))
    if not isinstance(body, dict):
        raise ValueError("expected a JSON object keyed by owner address")
    layout: dict[str, list[MessageRecord]] = {}
    for owner, items in body.items():
        if not isinstance(items, list):
            raise ValueError(f"expected a list of records for owner {owner!r}")
        layout[owner] = [record_from_dict(item) for item in items]
    return layout
