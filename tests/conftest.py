"""
Shared pytest fixtures:
- FakeChain: in-memory `Ledger` with a mempool, mining, reorg eviction and the
  four store contract versions (log / state / stamped / revisioned)
- isolated Prometheus registry per test
- client factory wired to a FakeChain
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import pytest
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from prometheus_client import CollectorRegistry

from blobstore.client import BlobStoreClient
from blobstore.config import BlobStoreConfig
from blobstore.errors import JsonRpcCode, RpcError
from blobstore.identifier import mask_identifier
from blobstore.metrics import BlobStoreMetrics
from blobstore.protocol import REVISION_EVENT_TOPIC, ProtocolVersion, from_name
from blobstore.utils.bytes import from_hex, to_hex, uint256_word
from blobstore.utils.hash import function_selector, keccak256

CONTRACT = "0x" + "ab" * 20
SENDER = "0x" + "11" * 20
OTHER_CONTRACT = "0x" + "cd" * 20
BASE_HEIGHT = 1000

BlockRef = Union[int, str]


def _sel(sig: str) -> bytes:
    return function_selector(sig)


SEL = {
    name: _sel(sig)
    for name, sig in {
        "storeBlob": "storeBlob(bytes)",
        "blobExists": "blobExists(bytes32)",
        "getBlobBlockNumber": "getBlobBlockNumber(bytes32)",
        "getBlob": "getBlob(bytes32)",
        "createWithNonce": "createWithNonce(bytes32,bytes)",
        "createNewRevision": "createNewRevision(bytes20,bytes)",
        "updateLatestRevision": "updateLatestRevision(bytes20,bytes)",
        "retractLatestRevision": "retractLatestRevision(bytes20)",
        "transfer": "transfer(bytes20,address)",
        "getRevisionBlockNumber": "getRevisionBlockNumber(bytes20,uint256)",
        "getRevisionCount": "getRevisionCount(bytes20)",
        "getAllRevisionBlockNumbers": "getAllRevisionBlockNumbers(bytes20)",
        "getOwner": "getOwner(bytes20)",
        "getFlags": "getFlags(bytes20)",
    }.items()
}


@dataclass
class _State:
    blobs: Dict[bytes, Tuple[int, bytes]] = field(default_factory=dict)
    revisions: Dict[bytes, List[Tuple[int, bytes]]] = field(default_factory=dict)
    owners: Dict[bytes, str] = field(default_factory=dict)
    flags: Dict[bytes, bytes] = field(default_factory=dict)
    created: Dict[Tuple[bytes, bytes], bytes] = field(default_factory=dict)
    logs: List[Dict[str, Any]] = field(default_factory=list)


class FakeChain:
    """
    Minimal in-memory ledger implementing only what the blob store exercises.

    Contract state is never stored directly: it is recomputed by replaying the
    mined blocks (and, for the 'pending' view, the mempool on top), so a reorg
    is just dropping blocks and pushing their transactions back to pending.
    """

    def __init__(self, version: ProtocolVersion) -> None:
        self.version = version
        self.blocks: List[List[Dict[str, Any]]] = []
        self.mempool: List[Dict[str, Any]] = []
        self.noise: List[Dict[str, Any]] = []
        self.calls: List[Tuple[str, Any]] = []
        self.sent: List[Dict[str, Any]] = []
        self._tx_ids = itertools.count(1)
        # Failure injection
        self.fail_estimate = False
        self.fail_broadcast = False
        self.drop_broadcasts = False
        self.colliding_probes = 0
        self.ghost_pointer: Optional[int] = None
        # Mixed into ids only when a create is mined, so simulation mispredicts.
        self.id_salt = b""
        self.on_pointer: Optional[Callable[[], None]] = None

    # --- chain control ----------------------------------------------------

    @property
    def head(self) -> int:
        return BASE_HEIGHT + len(self.blocks)

    def mine(self) -> int:
        self.blocks.append(self.mempool)
        self.mempool = []
        return self.head

    def mine_empty(self, n: int) -> None:
        for _ in range(n):
            self.blocks.append([])

    def reorg(self, depth: int = 1) -> None:
        """Drop the last `depth` blocks; their transactions become pending again."""
        evicted = self.blocks[-depth:]
        del self.blocks[-depth:]
        self.mempool = [tx for blk in evicted for tx in blk] + self.mempool

    # --- contract semantics -----------------------------------------------

    def _replay(self, pending: bool) -> _State:
        st = _State()
        for height, txs in enumerate(self.blocks, start=BASE_HEIGHT + 1):
            for tx in txs:
                self._apply(st, tx, height)
        if pending:
            for tx in self.mempool:
                self._apply(st, tx, self.head + 1)
        return st

    def _log(self, st: _State, tx: Dict[str, Any], block: int, topics: Sequence[bytes], blob: bytes) -> None:
        st.logs.append(
            {
                "address": CONTRACT,
                "blockNumber": hex(block),
                "transactionHash": tx.get("hash"),
                "topics": [to_hex(t) for t in topics],
                "data": to_hex(abi_encode(["bytes"], [blob])),
            }
        )

    def chosen_id(self, flags_nonce: bytes, salt: bytes = b"") -> bytes:
        return keccak256(b"blobstore-id" + salt + flags_nonce)[:20]

    def _apply(self, st: _State, tx: Dict[str, Any], block: int) -> None:
        data = from_hex(tx["input"])
        sel, args = data[:4], data[4:]
        if sel == SEL["storeBlob"]:
            (blob,) = abi_decode(["bytes"], args)
            ident = mask_identifier(keccak256(blob), self.version)
            if ident in st.blobs:
                return
            st.blobs[ident] = (block, blob)
            if not self.version.direct_read:
                self._log(st, tx, block, [ident], blob)
        elif sel == SEL["createWithNonce"]:
            flags_nonce, blob = abi_decode(["bytes32", "bytes"], args)
            if (flags_nonce[:4], blob) in st.created:
                return
            ident = self.chosen_id(flags_nonce, self.id_salt)
            if ident in st.revisions:
                return
            st.created[(flags_nonce[:4], blob)] = ident
            st.revisions[ident] = [(block, blob)]
            st.owners[ident] = tx.get("from") or SENDER
            st.flags[ident] = flags_nonce[:4]
            self._log(st, tx, block, [REVISION_EVENT_TOPIC, ident + b"\x00" * 12, uint256_word(0)], blob)
        elif sel == SEL["createNewRevision"]:
            ident, blob = abi_decode(["bytes20", "bytes"], args)
            revs = st.revisions.get(ident)
            if revs is None:
                return
            revs.append((block, blob))
            self._log(st, tx, block, [REVISION_EVENT_TOPIC, ident + b"\x00" * 12, uint256_word(len(revs) - 1)], blob)
        elif sel == SEL["transfer"]:
            ident, recipient = abi_decode(["bytes20", "address"], args)
            if ident in st.owners:
                st.owners[ident] = recipient

    def _view(self, data: bytes, st: _State) -> bytes:
        sel, args = data[:4], data[4:]
        if sel == SEL["getBlobBlockNumber"]:
            (ident,) = abi_decode(["bytes32"], args)
            if self.ghost_pointer is not None:
                return uint256_word(self.ghost_pointer)
            return uint256_word(st.blobs.get(ident, (0, b""))[0])
        if sel == SEL["blobExists"]:
            (ident,) = abi_decode(["bytes32"], args)
            return abi_encode(["bool"], [ident in st.blobs])
        if sel == SEL["getBlob"]:
            (ident,) = abi_decode(["bytes32"], args)
            return abi_encode(["bytes"], [st.blobs.get(ident, (0, b""))[1]])
        if sel == SEL["createWithNonce"]:
            flags_nonce, blob = abi_decode(["bytes32", "bytes"], args)
            existing = st.created.get((flags_nonce[:4], blob))
            if existing is not None:
                return abi_encode(["bytes20"], [existing])
            if self.colliding_probes > 0:
                self.colliding_probes -= 1
                return b""
            ident = self.chosen_id(flags_nonce)
            if ident in st.revisions:
                return b""
            return abi_encode(["bytes20"], [ident])
        if sel == SEL["getRevisionBlockNumber"]:
            ident, rev = abi_decode(["bytes20", "uint256"], args)
            if self.ghost_pointer is not None:
                return uint256_word(self.ghost_pointer)
            revs = st.revisions.get(ident, [])
            return uint256_word(revs[rev][0] if rev < len(revs) else 0)
        if sel == SEL["getRevisionCount"]:
            (ident,) = abi_decode(["bytes20"], args)
            return uint256_word(len(st.revisions.get(ident, [])))
        if sel == SEL["getAllRevisionBlockNumbers"]:
            (ident,) = abi_decode(["bytes20"], args)
            return abi_encode(["uint256[]"], [[b for b, _ in st.revisions.get(ident, [])]])
        if sel == SEL["getOwner"]:
            (ident,) = abi_decode(["bytes20"], args)
            return abi_encode(["address"], [st.owners.get(ident, "0x" + "00" * 20)])
        if sel == SEL["getFlags"]:
            (ident,) = abi_decode(["bytes20"], args)
            return abi_encode(["bytes4"], [st.flags.get(ident, b"\x00" * 4)])
        return b""

    # --- Ledger protocol --------------------------------------------------

    def estimate_gas(self, tx: Dict[str, Any], block: BlockRef = "pending") -> int:
        self.calls.append(("estimate_gas", block))
        if self.fail_estimate:
            raise RpcError(method="eth_estimateGas", code=JsonRpcCode.SERVER_ERROR, message="execution reverted")
        return 21000 + 16 * len(from_hex(tx["data"]))

    def send_transaction(self, tx: Dict[str, Any]) -> str:
        self.calls.append(("send_transaction", tx))
        if self.fail_broadcast:
            raise RpcError(method="eth_sendTransaction", code=-32000, message="insufficient funds")
        self.sent.append(tx)
        tx_hash = to_hex(keccak256(str(next(self._tx_ids)).encode()))
        if not self.drop_broadcasts:
            self.mempool.append(
                {"hash": tx_hash, "from": tx.get("from"), "to": tx["to"], "input": tx["data"]}
            )
        return tx_hash

    def get_pending_transactions(self) -> List[Dict[str, Any]]:
        self.calls.append(("get_pending_transactions", None))
        return [dict(tx) for tx in self.noise + self.mempool]

    def get_logs(
        self,
        from_block: BlockRef,
        to_block: BlockRef,
        address: str,
        topics: Sequence[Any],
    ) -> List[Dict[str, Any]]:
        self.calls.append(("get_logs", (from_block, to_block, list(topics))))
        st = self._replay(pending=to_block == "pending")
        upper = {"latest": self.head, "pending": self.head + 1}.get(to_block, to_block)  # type: ignore[arg-type]
        lower = int(from_block)
        out = []
        for entry in st.logs:
            height = int(entry["blockNumber"], 16)
            if not lower <= height <= int(upper):
                continue
            if entry["address"].lower() != address.lower():
                continue
            if all(t is None or i < len(entry["topics"]) and entry["topics"][i] == t for i, t in enumerate(topics)):
                out.append(dict(entry))
        return out

    def call(self, tx: Dict[str, Any], block: BlockRef = "latest") -> bytes:
        data = from_hex(tx["data"])
        self.calls.append(("call", (data[:4], block)))
        result = self._view(data, self._replay(pending=block == "pending"))
        if data[:4] in (SEL["getBlobBlockNumber"], SEL["getRevisionBlockNumber"]) and self.on_pointer is not None:
            hook, self.on_pointer = self.on_pointer, None
            hook()
        return result

    def block_number(self) -> int:
        self.calls.append(("block_number", None))
        return self.head

    def accounts(self) -> List[str]:
        return [SENDER]

    # --- helpers for assertions -------------------------------------------

    def methods(self) -> List[str]:
        return [m for m, _ in self.calls]


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> BlobStoreMetrics:
    return BlobStoreMetrics(registry=registry)


@pytest.fixture
def make_chain() -> Callable[[str], FakeChain]:
    def _make(protocol: str = "log") -> FakeChain:
        return FakeChain(from_name(protocol))

    return _make


@pytest.fixture
def make_client(make_chain, metrics):
    """Build (client, chain) for a protocol name; extra kwargs override config."""

    def _make(protocol: str = "log", **overrides: Any) -> Tuple[BlobStoreClient, FakeChain]:
        chain = make_chain(protocol)
        params: Dict[str, Any] = dict(
            contract_address=CONTRACT,
            protocol=protocol,
            confirm_timeout=0.0,
            confirm_poll=0.0,
            restart_backoff=0.0,
        )
        params.update(overrides)
        cfg = BlobStoreConfig(**params)
        cfg.validate()
        client = BlobStoreClient(cfg, ledger=chain, metrics=metrics, sleep=lambda _s: None)
        return client, chain

    return _make
