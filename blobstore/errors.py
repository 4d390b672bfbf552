"""
Typed error classes for the blobstore client.

These are raised by rpc/http, submit, retrieve and the ABI helpers so callers
can catch specific failure modes while still being able to catch the base
`BlobStoreError`.

Propagation rules:
- transport failures (`RpcError`) surface as-is from every layer
- gas estimation failures become `EstimationError`, chained from the RPC error
- stale reads (`StaleRead`) are retried inside `retrieve` and only escape as
  `ReconciliationTimeout` once the restart cap is hit
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional

__all__ = [
    "BlobStoreError",
    "TransportError",
    "RpcError",
    "JsonRpcCode",
    "EstimationError",
    "BroadcastNotObserved",
    "NotFound",
    "ReconciliationTimeout",
    "StaleRead",
    "RetrievalCancelled",
    "NonceSearchExhausted",
    "PayloadDecodeError",
    "AbiError",
    "from_jsonrpc_error",
]


class BlobStoreError(Exception):
    """Base class for all blobstore errors."""


class TransportError(BlobStoreError):
    """Network or node-level failure talking to the ledger."""


class JsonRpcCode(IntEnum):
    # JSON-RPC 2.0 reserved codes
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Server errors (implementation-defined range: -32099 to -32000)
    SERVER_ERROR = -32000

    # Client-side transport failure after retries
    TRANSPORT_FAILED = -32098


@dataclass(slots=True, eq=False)
class RpcError(TransportError):
    """Raised when a JSON-RPC call fails at the transport or returns an error object."""

    method: Optional[str]
    code: int
    message: str
    data: Optional[Any] = None
    request_id: Optional[Any] = None
    http_status: Optional[int] = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        parts = [f"RPC[{self.method or '-'}] code={self.code} msg={self.message!r}"]
        if self.request_id is not None:
            parts.append(f"id={self.request_id}")
        if self.http_status is not None:
            parts.append(f"http={self.http_status}")
        if self.data is not None:
            parts.append(f"data={self.data!r}")
        return " ".join(parts)

    @property
    def code_enum(self) -> Optional[JsonRpcCode]:
        try:
            return JsonRpcCode(self.code)
        except ValueError:
            return None


@dataclass(slots=True, eq=False)
class EstimationError(BlobStoreError):
    """Gas estimation for a call payload failed; nothing was broadcast."""

    message: str
    cause: Optional[BaseException] = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        if self.cause is not None:
            return f"EstimationError: {self.message} ({self.cause})"
        return f"EstimationError: {self.message}"


@dataclass(slots=True, eq=False)
class BroadcastNotObserved(BlobStoreError):
    """
    The node accepted the transaction but the blob never became observable
    (neither pending nor mined) within the confirmation window.
    """

    identifier: str
    tx_hash: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        tx = f" tx={self.tx_hash}" if self.tx_hash else ""
        return f"Blob failed to broadcast: {self.identifier}{tx}"


@dataclass(slots=True, eq=False)
class NotFound(BlobStoreError):
    """No entry exists for the identifier (and revision) in the mempool or the log."""

    identifier: str
    revision: Optional[int] = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        if self.revision is not None:
            return f"Blob revision not found: {self.identifier} rev={self.revision}"
        return f"Blob not found: {self.identifier}"


@dataclass(slots=True, eq=False)
class ReconciliationTimeout(NotFound):
    """The chain kept invalidating resolved pointers until the restart cap was hit."""

    attempts: int = 0

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"Blob not reconciled after {self.attempts} attempts: {self.identifier}"


class StaleRead(BlobStoreError):
    """
    Internal signal: the resolved block no longer holds the entry (reorg).
    Caught by the retriever to restart resolution.
    """

    def __init__(self, identifier: str, block: int) -> None:
        super().__init__(f"stale pointer for {identifier} at block {block}")
        self.identifier = identifier
        self.block = block


class RetrievalCancelled(BlobStoreError):
    """The caller's cancel event fired or its deadline passed mid-retrieval."""


@dataclass(slots=True, eq=False)
class NonceSearchExhausted(BlobStoreError):
    """Every candidate nonce in the bounded probe collided on-chain."""

    attempts: int

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"no available blob id after {self.attempts} nonce probes"


class PayloadDecodeError(BlobStoreError):
    """A length-prefixed payload in log data or tx input is malformed."""


@dataclass(slots=True, eq=False)
class AbiError(BlobStoreError):
    """
    Raised when ABI encoding/decoding fails.

    Typical causes: wrong arg types/lengths, out-of-range integers, bad bytes hex.
    """

    message: str
    function: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        where = f" [fn={self.function}]" if self.function else ""
        return f"AbiError{where}: {self.message}"


def from_jsonrpc_error(
    err_obj: Dict[str, Any],
    *,
    method: Optional[str] = None,
    request_id: Optional[Any] = None,
    http_status: Optional[int] = None,
) -> RpcError:
    """
    Convert a JSON-RPC error object into RpcError.

    `err_obj` should resemble: {"code": int, "message": str, "data": any?}
    """
    return RpcError(
        method=method,
        code=int(err_obj.get("code", JsonRpcCode.SERVER_ERROR)),
        message=str(err_obj.get("message", "Unknown JSON-RPC error")),
        data=err_obj.get("data"),
        request_id=request_id,
        http_status=http_status,
    )
