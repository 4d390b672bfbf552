"""
blobstore.retrieve
==================

Resolve an identifier back to blob bytes against a chain that can reorganize
between any two reads.

There is no "get by id" primitive for log-backed versions. A lookup is
reconstructed from three sources, consulted in this order:

    RESOLVE_POINTER   ask the contract which block logged the entry
    SCAN_MEMPOOL      pointer unresolved: look for a pending store tx whose
                      payload hashes to the identifier, then re-resolve once
    SCAN_LOG_WINDOW   read the logs at the pointer, widened to
                      [head - margin, upper] when the pointer is recent

An empty window means the pointer went stale (the entry was evicted back to
pending by a reorg). That raises `StaleRead` internally and the lookup starts
over from RESOLVE_POINTER, with backoff, at most `max_restarts` times before
`ReconciliationTimeout` is raised.

The `state` version stores the blob in contract storage and is a `getBlob`
read at 'pending', followed by `blobExists` when that read comes back empty.

Every network round-trip is preceded by a checkpoint that honours the caller's
`cancel` event and `timeout`.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

from .abi import (decode_input_payload, decode_log_payload, decode_return,
                  encode_call, id_topic, revision_topic)
from .errors import (NotFound, PayloadDecodeError, ReconciliationTimeout,
                     RetrievalCancelled, StaleRead)
from .identifier import mask_identifier, matches_identifier
from .ledger import Ledger
from .metrics import BlobStoreMetrics, get_metrics
from .protocol import ProtocolVersion
from .utils.bytes import BytesLike, ensure_bytes, hex_to_int, to_hex
from .utils.hash import function_selector
from .utils.retry import backoff_delay


class RetrieveState(str, Enum):
    RESOLVE_POINTER = "resolve_pointer"
    SCAN_MEMPOOL = "scan_mempool"
    SCAN_LOG_WINDOW = "scan_log_window"
    DONE = "done"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class RetrieveResult:
    blob: bytes
    path: str
    block: Optional[int] = None
    restarts: int = 0


class Retriever:
    """
    Reconciling retriever for one contract deployment.

    Parameters
    ----------
    ledger:
        Node adapter (see `blobstore.ledger.Ledger`).
    version:
        Contract protocol version.
    contract:
        0x-address of the store contract.
    reorg_margin:
        Override of the version's rescan margin, in blocks.
    max_restarts:
        Stale reads tolerated before giving up with ReconciliationTimeout.
    restart_backoff:
        Base delay (seconds) between restarts; grows exponentially.
    """

    def __init__(
        self,
        ledger: Ledger,
        version: ProtocolVersion,
        contract: str,
        *,
        reorg_margin: Optional[int] = None,
        max_restarts: int = 8,
        restart_backoff: float = 0.25,
        restart_backoff_max: float = 5.0,
        metrics: Optional[BlobStoreMetrics] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_restarts < 0:
            raise ValueError("max_restarts must be >= 0")
        self.ledger = ledger
        self.version = version
        self.contract = contract
        self.reorg_margin = version.reorg_margin if reorg_margin is None else int(reorg_margin)
        self.max_restarts = max_restarts
        self.restart_backoff = restart_backoff
        self.restart_backoff_max = restart_backoff_max
        self.metrics = metrics or get_metrics()
        self._log = logger or logging.getLogger("blobstore.retrieve")
        self._sleep = sleep
        self._clock = clock
        self._store_selector = function_selector(version.store_signature)

    # ------------------------------------------------------------------ API

    def retrieve(
        self,
        identifier: Union[BytesLike, str],
        revision: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bytes:
        return self.resolve(identifier, revision, timeout=timeout, cancel=cancel).blob

    def resolve(
        self,
        identifier: Union[BytesLike, str],
        revision: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> RetrieveResult:
        """Like `retrieve` but also reports the path taken and the block, if any."""
        ident = self.normalize_identifier(identifier)
        rev = self._normalize_revision(revision)
        deadline = self._clock() + float(timeout) if timeout is not None else None
        id_hex = to_hex(ident)

        if self.version.direct_read:
            try:
                blob = self._read_state(ident, deadline, cancel)
            except NotFound:
                self.metrics.retrieved("not_found")
                raise
            self.metrics.retrieved("state")
            self._log.info("retrieved %s via state (%d bytes)", id_hex, len(blob))
            return RetrieveResult(blob=blob, path="state")

        restarts = 0
        while True:
            try:
                blob, path, block = self._attempt(ident, rev, deadline, cancel)
            except StaleRead as stale:
                restarts += 1
                self.metrics.stale_read()
                if restarts > self.max_restarts:
                    self.metrics.retrieved("timeout")
                    raise ReconciliationTimeout(identifier=id_hex, revision=rev, attempts=restarts) from stale
                delay = backoff_delay(
                    restarts,
                    base=self.restart_backoff,
                    max_delay=self.restart_backoff_max,
                    jitter="equal",
                )
                self._log.warning(
                    "stale pointer for %s at block %d; restart %d/%d in %.2fs",
                    id_hex, stale.block, restarts, self.max_restarts, delay,
                )
                self._pause(delay, deadline, cancel)
                continue
            except NotFound:
                self._transition(id_hex, RetrieveState.NOT_FOUND)
                self.metrics.retrieved("not_found")
                raise

            self._transition(id_hex, RetrieveState.DONE)
            self.metrics.retrieved(path)
            self._log.info("retrieved %s via %s (%d bytes, restarts=%d)", id_hex, path, len(blob), restarts)
            return RetrieveResult(blob=blob, path=path, block=block, restarts=restarts)

    # ------------------------------------------------------------ one pass

    def _attempt(
        self,
        ident: bytes,
        revision: Optional[int],
        deadline: Optional[float],
        cancel: Optional[threading.Event],
    ) -> Tuple[bytes, str, Optional[int]]:
        id_hex = to_hex(ident)
        pointer = self._resolve_pointer(ident, revision, deadline, cancel)

        if pointer == 0:
            if not self.version.mempool_scan:
                raise NotFound(identifier=id_hex, revision=revision)
            blob = self._scan_mempool(ident, deadline, cancel)
            if blob is not None:
                return blob, "mempool", None
            # It may have been mined between the two reads.
            pointer = self._resolve_pointer(ident, revision, deadline, cancel)
            if pointer == 0:
                raise NotFound(identifier=id_hex, revision=revision)

        blob, block = self._scan_window(ident, revision, pointer, deadline, cancel)
        return blob, "log", block

    def _resolve_pointer(
        self,
        ident: bytes,
        revision: Optional[int],
        deadline: Optional[float],
        cancel: Optional[threading.Event],
    ) -> int:
        self._transition(to_hex(ident), RetrieveState.RESOLVE_POINTER)
        self._checkpoint(deadline, cancel)
        sig = self.version.signature("pointer")
        if self.version.revisioned:
            data = encode_call(sig, ident, revision)
        else:
            data = encode_call(sig, mask_identifier(ident, self.version))
        raw = self.ledger.call({"to": self.contract, "data": to_hex(data)}, self.version.pointer_view)
        if not raw:
            return 0
        (block,) = decode_return(["uint256"], raw, function=sig)
        self._log.debug("pointer for %s -> %d", to_hex(ident), block)
        return int(block)

    def _scan_mempool(
        self,
        ident: bytes,
        deadline: Optional[float],
        cancel: Optional[threading.Event],
    ) -> Optional[bytes]:
        self._transition(to_hex(ident), RetrieveState.SCAN_MEMPOOL)
        self._checkpoint(deadline, cancel)
        target = self.contract.lower()
        for tx in self.ledger.get_pending_transactions():
            if (tx.get("to") or "").lower() != target:
                continue
            raw_input = ensure_bytes(tx.get("input") or tx.get("data") or "0x")
            if raw_input[:4] != self._store_selector:
                continue
            try:
                blob = decode_input_payload(raw_input, self.version.input_length_offset)
            except PayloadDecodeError as e:
                self._log.debug("pending tx %s has no readable payload: %s", tx.get("hash"), e)
                continue
            if matches_identifier(blob, ident, self.version):
                return blob
        return None

    def _scan_window(
        self,
        ident: bytes,
        revision: Optional[int],
        pointer: int,
        deadline: Optional[float],
        cancel: Optional[threading.Event],
    ) -> Tuple[bytes, Optional[int]]:
        id_hex = to_hex(ident)
        self._transition(id_hex, RetrieveState.SCAN_LOG_WINDOW)
        self._checkpoint(deadline, cancel)
        head = self.ledger.block_number()
        from_block, to_block = window_bounds(head, pointer, self.reorg_margin, self.version.window_upper)
        self._log.debug("scanning %s for %s in [%s, %s]", self.contract, id_hex, from_block, to_block)

        self._checkpoint(deadline, cancel)
        logs = self.ledger.get_logs(from_block, to_block, self.contract, self._topics(ident, revision))
        for entry in logs:
            blob = decode_log_payload(entry.get("data") or "0x", self.version.log_length_offset)
            if self.version.content_addressed and not matches_identifier(blob, ident, self.version):
                self._log.debug("log entry in block %s does not hash to %s", entry.get("blockNumber"), id_hex)
                continue
            block = entry.get("blockNumber")
            return blob, hex_to_int(block) if block is not None else None
        raise StaleRead(id_hex, pointer)

    def _read_state(
        self,
        ident: bytes,
        deadline: Optional[float],
        cancel: Optional[threading.Event],
    ) -> bytes:
        self._checkpoint(deadline, cancel)
        sig = self.version.signature("get")
        raw = self.ledger.call(
            {"to": self.contract, "data": to_hex(encode_call(sig, ident))},
            "pending",
        )
        blob = decode_return(["bytes"], raw, function=sig)[0] if raw else b""
        if blob:
            return bytes(blob)
        # getBlob cannot tell a stored empty blob from a missing one.
        self._checkpoint(deadline, cancel)
        exists_sig = self.version.signature("exists")
        raw = self.ledger.call(
            {"to": self.contract, "data": to_hex(encode_call(exists_sig, ident))},
            "pending",
        )
        if raw and decode_return(["bool"], raw, function=exists_sig)[0]:
            return b""
        raise NotFound(identifier=to_hex(ident))

    # ------------------------------------------------------------- helpers

    def _topics(self, ident: bytes, revision: Optional[int]) -> List[str]:
        if self.version.event_topic is not None:
            return [to_hex(self.version.event_topic), id_topic(ident), revision_topic(revision or 0)]
        return [id_topic(mask_identifier(ident, self.version))]

    def normalize_identifier(self, identifier: Union[BytesLike, str]) -> bytes:
        ident = ensure_bytes(identifier)
        if len(ident) != self.version.id_length:
            raise ValueError(
                f"{self.version.name} identifiers are {self.version.id_length} bytes, got {len(ident)}"
            )
        return ident

    def _normalize_revision(self, revision: Optional[int]) -> Optional[int]:
        if not self.version.revisioned:
            if revision is not None:
                raise ValueError(f"{self.version.name} blobs have no revisions")
            return None
        if revision is None:
            return 0
        if revision < 0:
            raise ValueError("revision must be >= 0")
        return int(revision)

    def _transition(self, id_hex: str, state: RetrieveState) -> None:
        self._log.debug("retrieve %s -> %s", id_hex, state.name)

    def _checkpoint(self, deadline: Optional[float], cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise RetrievalCancelled("retrieval cancelled")
        if deadline is not None and self._clock() >= deadline:
            raise RetrievalCancelled("retrieval deadline exceeded")

    def _pause(self, delay: float, deadline: Optional[float], cancel: Optional[threading.Event]) -> None:
        if deadline is not None:
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise RetrievalCancelled("retrieval deadline exceeded")
            delay = min(delay, remaining)
        if cancel is not None:
            if cancel.wait(delay):
                raise RetrievalCancelled("retrieval cancelled")
            return
        self._sleep(delay)


def window_bounds(head: int, pointer: int, margin: int, upper: str) -> Tuple[int, Union[int, str]]:
    """
    Block range to scan for an entry the contract says lives at `pointer`.

    Recent pointers (within `margin` of the head) may have moved in a reorg, so
    the whole tail of the chain is scanned; older ones are read exactly.
    """
    if head - pointer < margin:
        return max(head - margin, 0), upper
    return pointer, pointer


__all__ = ["RetrieveState", "RetrieveResult", "Retriever", "window_bounds"]
