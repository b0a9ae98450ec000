"""Ordered record container keyed by record id, with a per-owner size cap."""

from __future__ import annotations

from typing import Iterator

from message_signer.models import HISTORY_LIMIT, MessageRecord, normalize_address


class RecordHistory:
    """
    Insertion-ordered map of record_id -> MessageRecord.

    - upsert: insert new ids, replace existing ids in place; evicts the owner's oldest
      records (by created_at, then insertion order) beyond the limit.
    - replace: swap an existing entry only; used to reconcile optimistic updates.
    - records(): newest first by created_at; most recently inserted first on ties.
    """

    def __init__(self, limit: int = HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("history limit must be at least 1")
        self.limit = limit
        self._entries: dict[str, MessageRecord] = {}
        self._seq: dict[str, int] = {}
        self._counter = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._entries

    def __iter__(self) -> Iterator[MessageRecord]:
        return iter(self.records())

    def copy(self) -> RecordHistory:
        """Independent history with the same entries and insertion order."""
        clone = RecordHistory(self.limit)
        clone._entries = dict(self._entries)
        clone._seq = dict(self._seq)
        clone._counter = self._counter
        return clone

    def get(self, record_id: str) -> MessageRecord | None:
        return self._entries.get(record_id)

    def upsert(self, record: MessageRecord) -> list[MessageRecord]:
        """Insert or replace a record; return records evicted by the cap."""
        if record.record_id in self._entries:
            self._entries[record.record_id] = record
            return []
        self._counter += 1
        self._entries[record.record_id] = record
        self._seq[record.record_id] = self._counter
        return self._evict(record.owner_key)

    def replace(self, record: MessageRecord) -> bool:
        if record.record_id not in self._entries:
            return False
        self._entries[record.record_id] = record
        return True

    def discard(self, record_id: str) -> MessageRecord | None:
        self._seq.pop(record_id, None)
        return self._entries.pop(record_id, None)

    def clear(self, owner_address: str | None = None) -> int:
        """Remove every record (or every record of one owner); return how many went."""
        if owner_address is None:
            count = len(self._entries)
            self._entries.clear()
            self._seq.clear()
            return count
        ids = [r.record_id for r in self.for_owner(owner_address)]
        for record_id in ids:
            self.discard(record_id)
        return len(ids)

    def records(self) -> list[MessageRecord]:
        return sorted(self._entries.values(), key=self._order_key, reverse=True)

    def for_owner(self, owner_address: str) -> list[MessageRecord]:
        owner = normalize_address(owner_address)
        return [r for r in self.records() if r.owner_key == owner]

    def owners(self) -> list[str]:
        return sorted({r.owner_key for r in self._entries.values()})

    def _order_key(self, record: MessageRecord) -> tuple[int, int]:
        return (record.created_at, self._seq[record.record_id])

    def _evict(self, owner: str) -> list[MessageRecord]:
        owned = self.for_owner(owner)
        evicted = owned[self.limit:]
        for record in evicted:
            self.discard(record.record_id)
        return evicted
