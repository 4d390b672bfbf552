"""
High-level client for a deployed blob store contract.

    from blobstore import BlobStoreClient, BlobStoreConfig

    cfg = BlobStoreConfig.with_overrides(contract_address="0x...", protocol="log")
    with BlobStoreClient(cfg) as store:
        result = store.store(b"hello")
        assert store.retrieve(result.identifier) == b"hello"

The client owns its RPC connection unless one (or a whole `Ledger`) is passed
in, and keeps no state between calls apart from the sending account it looked
up from the node.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .abi import decode_return, encode_call, revision_topic
from .config import BlobStoreConfig, is_address
from .errors import (BroadcastNotObserved, EstimationError,
                     NonceSearchExhausted, TransportError)
from .identifier import Flags, derive_identifier, mask_identifier, probe_identifier
from .ledger import JsonRpcLedger, Ledger
from .metrics import BlobStoreMetrics, get_metrics
from .protocol import ProtocolVersion, from_name
from .retrieve import RetrieveResult, Retriever
from .rpc.http import RpcClient
from .submit import SubmitResult, build_tx, confirm, estimate, send
from .utils.bytes import BytesLike, from_hex, to_hex

IdLike = Union[BytesLike, str]

# Owner-only mutations on the revisioned contract. All take the blob id first.
REVISION_OPERATIONS: Dict[str, str] = {
    "create_new_revision": "createNewRevision(bytes20,bytes)",
    "update_latest_revision": "updateLatestRevision(bytes20,bytes)",
    "retract_latest_revision": "retractLatestRevision(bytes20)",
    "restart": "restart(bytes20,bytes)",
    "retract": "retract(bytes20)",
    "transfer_enable": "transferEnable(bytes20)",
    "transfer_disable": "transferDisable(bytes20)",
    "transfer": "transfer(bytes20,address)",
    "disown": "disown(bytes20)",
    "set_not_updatable": "setNotUpdatable(bytes20)",
    "set_enforce_revisions": "setEnforceRevisions(bytes20)",
    "set_not_retractable": "setNotRetractable(bytes20)",
    "set_not_transferable": "setNotTransferable(bytes20)",
}

GETTERS: Dict[str, Tuple[str, str]] = {
    "get_owner": ("getOwner(bytes20)", "address"),
    "get_revision_count": ("getRevisionCount(bytes20)", "uint256"),
    "get_revision_block_number": ("getRevisionBlockNumber(bytes20,uint256)", "uint256"),
    "get_all_revision_block_numbers": ("getAllRevisionBlockNumbers(bytes20)", "uint256[]"),
    "get_flags": ("getFlags(bytes20)", "bytes4"),
}

# Getter results for an empty `eth_call` answer (no code, or a bare return).
_EMPTY_RETURNS: Dict[str, Any] = {
    "address": "0x" + "00" * 20,
    "uint256": 0,
    "uint256[]": (),
    "bytes4": b"\x00" * 4,
}


class BlobStoreClient:
    def __init__(
        self,
        config: Optional[BlobStoreConfig] = None,
        *,
        ledger: Optional[Ledger] = None,
        rpc: Optional[RpcClient] = None,
        metrics: Optional[BlobStoreMetrics] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or BlobStoreConfig.from_env()
        if not self.config.contract_address:
            raise ValueError("contract_address is required (BLOBSTORE_CONTRACT)")
        self.contract: str = self.config.contract_address
        self.version: ProtocolVersion = from_name(self.config.protocol)
        self.metrics = metrics or get_metrics()
        self._log = logger or logging.getLogger("blobstore.client")
        self._sleep = sleep
        self._clock = clock

        self._rpc: Optional[RpcClient] = None
        if ledger is None:
            if rpc is None:
                rpc = RpcClient.from_config(self.config)
                self._rpc = rpc
            ledger = JsonRpcLedger(rpc)
        self.ledger: Ledger = ledger
        self._from: Optional[str] = self.config.from_address

        self.retriever = Retriever(
            self.ledger,
            self.version,
            self.contract,
            reorg_margin=self.config.reorg_margin,
            max_restarts=self.config.max_restarts,
            restart_backoff=self.config.restart_backoff,
            metrics=self.metrics,
            sleep=sleep,
            clock=clock,
        )

    # --- lifecycle --------------------------------------------------------

    def __enter__(self) -> "BlobStoreClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()

    def close(self) -> None:
        """Close the RPC connection if this client opened it."""
        if self._rpc is not None:
            self._rpc.close()
            self._rpc = None

    @property
    def from_address(self) -> Optional[str]:
        """Configured sender, else the node's first managed account."""
        if self._from is None:
            accounts = self.ledger.accounts()
            if accounts:
                self._from = accounts[0]
        return self._from

    # --- identifiers ------------------------------------------------------

    def derive_identifier(self, blob: BytesLike) -> bytes:
        return derive_identifier(blob, self.version)

    def _id(self, identifier: IdLike) -> bytes:
        return self.retriever.normalize_identifier(identifier)

    # --- store ------------------------------------------------------------

    def _store_payload(self, blob: bytes, flags: Optional[Flags]) -> Tuple[bytes, bytes]:
        """(identifier, call data) for storing `blob` under this version."""
        if self.version.content_addressed:
            if flags is not None:
                raise ValueError(f"{self.version.name} contracts take no flags")
            return derive_identifier(blob, self.version), encode_call(self.version.store_signature, blob)
        candidate = probe_identifier(
            self.ledger,
            self.version,
            self.contract,
            blob,
            flags or Flags(),
            from_address=self.from_address,
            max_attempts=self.config.max_nonce_attempts,
            metrics=self.metrics,
        )
        self._log.debug("probe settled on %s after %d attempts", to_hex(candidate.identifier), candidate.attempts)
        return candidate.identifier, encode_call(self.version.store_signature, candidate.flags_nonce, blob)

    def estimate_store_cost(self, blob: BytesLike, flags: Optional[Flags] = None) -> int:
        """Gas needed to store `blob`, without broadcasting anything."""
        _, data = self._store_payload(bytes(blob), flags)
        return estimate(self.ledger, build_tx(self.contract, data, self.from_address))

    def store(self, blob: BytesLike, flags: Optional[Flags] = None) -> SubmitResult:
        """
        Store `blob` and wait until it is observable.

        `flags` only apply to the revisioned contract. There the nonce probe
        only proposes an id: the one returned is what the contract recorded,
        read back from the creation event of this transaction.
        """
        raw = bytes(blob)
        try:
            identifier, data = self._store_payload(raw, flags)
        except NonceSearchExhausted:
            self.metrics.store("nonce_exhausted")
            raise
        tx = build_tx(self.contract, data, self.from_address)
        try:
            tx_hash, gas = send(self.ledger, tx)
        except EstimationError:
            self.metrics.store("estimation_failed")
            raise
        except TransportError:
            self.metrics.store("broadcast_failed")
            raise

        recorded: List[bytes] = []

        def _observable() -> bool:
            if self.version.revisioned:
                created = self._created_identifier(tx_hash)
                if created is not None:
                    recorded.append(created)
                    return True
            return self.exists(identifier)

        try:
            result = confirm(
                identifier,
                tx_hash,
                gas,
                is_observable=_observable,
                confirm_timeout=self.config.confirm_timeout,
                confirm_poll=self.config.confirm_poll,
                sleep=self._sleep,
                clock=self._clock,
            )
        except BroadcastNotObserved:
            self.metrics.store("not_observed")
            raise
        except TransportError:
            self.metrics.store("confirm_failed")
            raise
        if recorded and recorded[-1] != identifier:
            self._log.info("contract recorded %s, probe proposed %s", to_hex(recorded[-1]), to_hex(identifier))
            result = replace(result, identifier=recorded[-1])
        self.metrics.store("ok")
        self._log.info("stored %d bytes as %s (tx=%s)", len(raw), result.identifier_hex, result.tx_hash)
        return result

    def _created_identifier(self, tx_hash: str) -> Optional[bytes]:
        """Id assigned by the contract in `tx_hash`, from its revision-0 event at 'pending'."""
        event = self.version.event_topic
        if event is None:
            raise ValueError(f"{self.version.name} contracts emit no creation event")
        head = self.ledger.block_number()
        logs = self.ledger.get_logs(
            max(head - self.retriever.reorg_margin, 0),
            "pending",
            self.contract,
            [to_hex(event), None, revision_topic(0)],
        )
        for entry in logs:
            if (entry.get("transactionHash") or "").lower() == tx_hash.lower():
                return from_hex(entry["topics"][1])[: self.version.id_length]
        return None

    # --- read -------------------------------------------------------------

    def retrieve(
        self,
        identifier: IdLike,
        revision: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bytes:
        return self.retriever.retrieve(identifier, revision, timeout=timeout, cancel=cancel)

    def resolve(
        self,
        identifier: IdLike,
        revision: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> RetrieveResult:
        return self.retriever.resolve(identifier, revision, timeout=timeout, cancel=cancel)

    def exists(self, identifier: IdLike) -> bool:
        """Whether the contract knows the blob in its pending state."""
        ident = self._id(identifier)
        if self.version.revisioned:
            return self.get_revision_block_number(ident, 0, block="pending") != 0
        sig = self.version.signature("exists")
        raw = self._view(sig, "pending", mask_identifier(ident, self.version))
        if not raw:
            return False
        return bool(decode_return(["bool"], raw, function=sig)[0])

    # --- revisioned contract: mutations -----------------------------------

    def _require_revisioned(self, op: str) -> None:
        if not self.version.revisioned:
            raise ValueError(f"{op} requires the revisioned protocol, client uses {self.version.name!r}")

    def _owner_call(self, op: str, identifier: IdLike, *args: Any) -> str:
        self._require_revisioned(op)
        data = encode_call(REVISION_OPERATIONS[op], self._id(identifier), *args)
        tx_hash, _gas = send(self.ledger, build_tx(self.contract, data, self.from_address))
        self._log.info("%s %s (tx=%s)", op, to_hex(self._id(identifier)), tx_hash)
        return tx_hash

    def create_new_revision(self, identifier: IdLike, blob: BytesLike) -> str:
        return self._owner_call("create_new_revision", identifier, bytes(blob))

    def update_latest_revision(self, identifier: IdLike, blob: BytesLike) -> str:
        return self._owner_call("update_latest_revision", identifier, bytes(blob))

    def retract_latest_revision(self, identifier: IdLike) -> str:
        return self._owner_call("retract_latest_revision", identifier)

    def restart(self, identifier: IdLike, blob: BytesLike) -> str:
        return self._owner_call("restart", identifier, bytes(blob))

    def retract(self, identifier: IdLike) -> str:
        return self._owner_call("retract", identifier)

    def transfer_enable(self, identifier: IdLike) -> str:
        return self._owner_call("transfer_enable", identifier)

    def transfer_disable(self, identifier: IdLike) -> str:
        return self._owner_call("transfer_disable", identifier)

    def transfer(self, identifier: IdLike, recipient: str) -> str:
        if not is_address(recipient):
            raise ValueError(f"recipient is not a 0x-address: {recipient!r}")
        return self._owner_call("transfer", identifier, recipient)

    def disown(self, identifier: IdLike) -> str:
        return self._owner_call("disown", identifier)

    def set_not_updatable(self, identifier: IdLike) -> str:
        return self._owner_call("set_not_updatable", identifier)

    def set_enforce_revisions(self, identifier: IdLike) -> str:
        return self._owner_call("set_enforce_revisions", identifier)

    def set_not_retractable(self, identifier: IdLike) -> str:
        return self._owner_call("set_not_retractable", identifier)

    def set_not_transferable(self, identifier: IdLike) -> str:
        return self._owner_call("set_not_transferable", identifier)

    # --- revisioned contract: getters -------------------------------------

    def _view(self, signature: str, block: str, *args: Any) -> bytes:
        tx: Dict[str, Any] = {"to": self.contract, "data": to_hex(encode_call(signature, *args))}
        return self.ledger.call(tx, block)

    def _getter(self, name: str, identifier: IdLike, *args: Any, block: str = "latest") -> Any:
        self._require_revisioned(name)
        sig, ret = GETTERS[name]
        raw = self._view(sig, block, self._id(identifier), *args)
        if not raw:
            return _EMPTY_RETURNS[ret]
        return decode_return([ret], raw, function=sig)[0]

    def get_owner(self, identifier: IdLike) -> str:
        return self._getter("get_owner", identifier)

    def get_revision_count(self, identifier: IdLike) -> int:
        return int(self._getter("get_revision_count", identifier))

    def get_revision_block_number(self, identifier: IdLike, revision: int, *, block: str = "latest") -> int:
        return int(self._getter("get_revision_block_number", identifier, revision, block=block))

    def get_all_revision_block_numbers(self, identifier: IdLike) -> List[int]:
        return [int(n) for n in self._getter("get_all_revision_block_numbers", identifier)]

    def get_flags(self, identifier: IdLike) -> Flags:
        return Flags.unpack(self._getter("get_flags", identifier))


__all__ = ["BlobStoreClient", "REVISION_OPERATIONS", "GETTERS"]
