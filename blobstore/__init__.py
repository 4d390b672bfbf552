"""
blobstore: store and retrieve byte blobs through a BlobStore contract on an
Ethereum-compatible chain.
Convenience exports for the most common client APIs.
"""

from .version import __version__  # noqa: F401

# Core config & errors
from .config import BlobStoreConfig  # noqa: F401
from .errors import (  # noqa: F401
    AbiError,
    BlobStoreError,
    BroadcastNotObserved,
    EstimationError,
    NonceSearchExhausted,
    NotFound,
    PayloadDecodeError,
    ReconciliationTimeout,
    RetrievalCancelled,
    RpcError,
    TransportError,
)

# RPC / ledger
from .rpc.http import RpcClient  # noqa: F401
from .ledger import JsonRpcLedger, Ledger  # noqa: F401

# Protocol pieces
from .protocol import ProtocolVersion, from_name as protocol_version  # noqa: F401
from .identifier import Flags, derive_identifier, find_available_nonce  # noqa: F401
from .submit import SubmitResult  # noqa: F401
from .retrieve import RetrieveResult, Retriever  # noqa: F401

# Facade
from .client import BlobStoreClient  # noqa: F401

__all__ = [
    "__version__",
    "BlobStoreConfig",
    "BlobStoreError",
    "TransportError",
    "RpcError",
    "EstimationError",
    "BroadcastNotObserved",
    "NotFound",
    "ReconciliationTimeout",
    "RetrievalCancelled",
    "NonceSearchExhausted",
    "PayloadDecodeError",
    "AbiError",
    "RpcClient",
    "Ledger",
    "JsonRpcLedger",
    "ProtocolVersion",
    "protocol_version",
    "Flags",
    "derive_identifier",
    "find_available_nonce",
    "SubmitResult",
    "RetrieveResult",
    "Retriever",
    "BlobStoreClient",
]
