"""
JSON-RPC transport for the blobstore client.

Only a synchronous HTTP client is provided; the ledger adapter in
`blobstore.ledger` is built on top of it.
"""

from .http import RpcClient

__all__ = ["RpcClient"]
