"""
Ledger collaborator: the narrow slice of an Ethereum-style node the blob store
protocol needs.

`Ledger` is a structural Protocol so tests can hand in an in-memory chain;
`JsonRpcLedger` is the production adapter that maps each operation onto the
standard `eth_*` JSON-RPC methods through `RpcClient`.

Transaction and log objects keep the node's wire shape (0x-hex strings), e.g.

    tx  = {"from": "0x..", "to": "0x..", "data": "0x..", "gas": "0x5208"}
    log = {"data": "0x..", "topics": ["0x..", ...], "blockNumber": "0x10"}
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from .errors import JsonRpcCode, RpcError
from .rpc.http import RpcClient
from .utils.bytes import from_hex, hex_to_int, int_to_quantity

BlockRef = Union[int, str]
Topic = Optional[Union[str, Sequence[str]]]


class Ledger(Protocol):
    def estimate_gas(self, tx: Dict[str, Any], block: BlockRef = "pending") -> int: ...

    def send_transaction(self, tx: Dict[str, Any]) -> str: ...

    def get_pending_transactions(self) -> List[Dict[str, Any]]: ...

    def get_logs(
        self,
        from_block: BlockRef,
        to_block: BlockRef,
        address: str,
        topics: Sequence[Topic],
    ) -> List[Dict[str, Any]]: ...

    def call(self, tx: Dict[str, Any], block: BlockRef = "latest") -> bytes: ...

    def block_number(self) -> int: ...

    def accounts(self) -> List[str]: ...


def block_param(block: BlockRef) -> str:
    """Block tags pass through; heights become JSON-RPC quantities."""
    if isinstance(block, int):
        return int_to_quantity(block)
    if block in ("latest", "pending", "earliest", "safe", "finalized"):
        return block
    raise ValueError(f"invalid block reference: {block!r}")


class JsonRpcLedger:
    """`Ledger` implementation over a JSON-RPC 2.0 endpoint."""

    def __init__(self, rpc: RpcClient, *, logger: Optional[logging.Logger] = None) -> None:
        self.rpc = rpc
        self._log = logger or logging.getLogger("blobstore.ledger")

    def estimate_gas(self, tx: Dict[str, Any], block: BlockRef = "pending") -> int:
        return hex_to_int(self.rpc.request("eth_estimateGas", [tx, block_param(block)]))

    def send_transaction(self, tx: Dict[str, Any]) -> str:
        tx_hash = self.rpc.request("eth_sendTransaction", [tx])
        if not isinstance(tx_hash, str):
            raise RpcError(
                method="eth_sendTransaction",
                code=JsonRpcCode.INTERNAL_ERROR,
                message="transaction hash missing from response",
                data=tx_hash,
            )
        return tx_hash

    def get_pending_transactions(self) -> List[Dict[str, Any]]:
        block = self.rpc.request("eth_getBlockByNumber", ["pending", True])
        if not block:
            return []
        txs = block.get("transactions") or []
        # Only full transaction objects carry `input`; hashes are useless here.
        return [tx for tx in txs if isinstance(tx, dict)]

    def get_logs(
        self,
        from_block: BlockRef,
        to_block: BlockRef,
        address: str,
        topics: Sequence[Topic],
    ) -> List[Dict[str, Any]]:
        flt = {
            "fromBlock": block_param(from_block),
            "toBlock": block_param(to_block),
            "address": address,
            "topics": list(topics),
        }
        self._log.debug("eth_getLogs %s..%s topics=%d", flt["fromBlock"], flt["toBlock"], len(flt["topics"]))
        logs = self.rpc.request("eth_getLogs", [flt])
        return list(logs or [])

    def call(self, tx: Dict[str, Any], block: BlockRef = "latest") -> bytes:
        result = self.rpc.request("eth_call", [tx, block_param(block)])
        return from_hex(result or "0x")

    def block_number(self) -> int:
        return hex_to_int(self.rpc.request("eth_blockNumber"))

    def accounts(self) -> List[str]:
        return list(self.rpc.request("eth_accounts") or [])


__all__ = ["BlockRef", "Ledger", "JsonRpcLedger", "block_param"]
