"""
Message signing pipeline with optimistic visibility.

sign_and_verify() walks one record through pending -> signed -> verified | rejected:

1. Initiate: a pending record is created and inserted into the visible set at once.
2. Acquire signature from the Signer. On failure the pending record is discarded and
   SignerUnavailable is raised; no retry.
3. Verify with verify_signature(). Valid -> verified; invalid -> rejected, kept visible.
4. Reconcile: the visible entry with the same record_id is replaced by the final record.
5. Persist through the store (normally a StorageRouter). A failure is reported in
   SignOutcome.persistence_error and logged; visible state is not rolled back.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Protocol

from message_signer.errors import MessageSignerError, SignerUnavailable
from message_signer.history import RecordHistory
from message_signer.models import HISTORY_LIMIT, MessageRecord, now_ms
from message_signer.storage import MessageStore
from message_signer.verifier import verify_signature

logger = logging.getLogger(__name__)

# Visible-set change events passed to listeners.
INSERTED = "inserted"
UPDATED = "updated"
DISCARDED = "discarded"

Listener = Callable[[str, MessageRecord], None]


class Signer(Protocol):
    """Wallet capability: sign a message, returning a hex signature, or raise."""

    async def sign(self, message: str) -> str: ...


@dataclass(frozen=True)
class SignOutcome:
    record: MessageRecord
    persisted: bool
    persistence_error: MessageSignerError | None = None


class MessagePipeline:
    """
    Drives sign requests for one user session and owns its visible record set.

    Args:
        signer: External wallet capability.
        store: Persistence (a StorageRouter or any MessageStore).
        history_limit: Per-owner cap on the visible set.
        require_owner_match: When no expected address is passed to sign_and_verify,
            use the owner address as the expected signer. Off by default: without an
            expected address a successful recovery verifies the record.
        signer_timeout: Seconds to wait for the wallet; None waits for the signer to fail.
            On timeout the wallet call is not cancelled, its late result is dropped.
        clock: Epoch-milliseconds source for created_at.
    """

    def __init__(
        self,
        signer: Signer,
        store: MessageStore,
        history_limit: int = HISTORY_LIMIT,
        require_owner_match: bool = False,
        signer_timeout: float | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.signer = signer
        self.store = store
        self.require_owner_match = require_owner_match
        self.signer_timeout = signer_timeout
        self._clock = clock
        self._visible = RecordHistory(history_limit)
        self._listeners: list[Listener] = []
        # signer calls still running after a timeout
        self._late_signatures: set[asyncio.Future] = set()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a visible-set listener; returns an unsubscribe callable."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _emit(self, event: str, record: MessageRecord) -> None:
        for listener in list(self._listeners):
            listener(event, record)

    @property
    def records(self) -> list[MessageRecord]:
        """Visible records, newest first."""
        return self._visible.records()

    def records_for(self, owner_address: str) -> list[MessageRecord]:
        return self._visible.for_owner(owner_address)

    def _show(self, record: MessageRecord) -> None:
        for evicted in self._visible.upsert(record):
            self._emit(DISCARDED, evicted)
        self._emit(INSERTED, record)

    def _reconcile(self, record: MessageRecord) -> None:
        if self._visible.replace(record):
            self._emit(UPDATED, record)
        else:
            # caller cleared or evicted the entry meanwhile
            logger.debug("record %s no longer visible, skipping reconcile", record.record_id)

    def _drop(self, record: MessageRecord) -> None:
        if self._visible.discard(record.record_id) is not None:
            self._emit(DISCARDED, record)

    def _collect_late_signature(self, task: asyncio.Future) -> None:
        self._late_signatures.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug("late signer call failed: %s", error)
        else:
            logger.info("signature arrived after the %ss timeout and was dropped", self.signer_timeout)

    async def _acquire_signature(self, message_text: str) -> str:
        try:
            if self.signer_timeout is None:
                return await self.signer.sign(message_text)
            sign = asyncio.ensure_future(self.signer.sign(message_text))
            try:
                # shielded: the wallet round-trip is left running when the wait gives up
                return await asyncio.wait_for(asyncio.shield(sign), self.signer_timeout)
            except asyncio.TimeoutError:
                self._late_signatures.add(sign)
                sign.add_done_callback(self._collect_late_signature)
                raise
        except SignerUnavailable:
            raise
        except asyncio.TimeoutError as e:
            raise SignerUnavailable(f"signer did not respond within {self.signer_timeout}s") from e
        except Exception as e:
            raise SignerUnavailable(f"signing failed: {e}") from e

    async def sign_and_verify(
        self,
        message_text: str,
        owner_address: str,
        expected_address: str | None = None,
    ) -> SignOutcome:
        """
        Sign, verify, reconcile and persist one message.

        Raises:
            ValidationError: empty owner/message or message over the size guard.
            SignerUnavailable: the wallet failed; the optimistic record is discarded.
        """
        pending = MessageRecord.create(message_text, owner_address, created_at=self._clock())
        self._show(pending)
        logger.debug("record %s pending: %r", pending.record_id, message_text[:50])

        try:
            signature = await self._acquire_signature(message_text)
        except SignerUnavailable as e:
            self._drop(pending)
            logger.warning("signing failed for %s: %s", pending.owner_key, e)
            raise
        signed = pending.with_signature(signature)
        self._reconcile(signed)

        if expected_address is None and self.require_owner_match:
            expected_address = owner_address
        result = verify_signature(message_text, signature, expected_address)
        final = signed.with_verification(result)
        self._reconcile(final)
        logger.debug("record %s %s", final.record_id, final.lifecycle_state.value)

        try:
            await self.store.put(final)
        except MessageSignerError as e:
            logger.warning("record %s kept locally, persistence failed: %s", final.record_id, e)
            return SignOutcome(record=final, persisted=False, persistence_error=e)
        return SignOutcome(record=final, persisted=True)

    async def refresh(self, owner_address: str) -> list[MessageRecord]:
        """Load the owner's persisted history into the visible set; return the owner's visible records."""
        for record in reversed(await self.store.list(owner_address)):
            if record.record_id in self._visible:
                if self._visible.replace(record):
                    self._emit(UPDATED, record)
            else:
                self._show(record)
        return self.records_for(owner_address)

    async def clear(self, owner_address: str) -> None:
        """Delete the owner's history from the visible set and from storage."""
        for record in self.records_for(owner_address):
            self._drop(record)
        await self.store.delete_all(owner_address)
