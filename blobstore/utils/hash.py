from __future__ import annotations

from eth_utils import keccak as _keccak

from .bytes import BytesLike, ensure_bytes, to_hex


# --- Keccak-256 (Ethereum-style) ----------------------------------------------
# Ethereum's `sha3` is the original Keccak-256 padding, not NIST SHA3-256, so
# hashlib.sha3_256 gives different digests. eth-utils delegates to eth-hash,
# which picks up the pycryptodome backend.


def keccak256(data: BytesLike) -> bytes:
    """Return Keccak-256 digest of *data* (bytes)."""
    return _keccak(primitive=ensure_bytes(data))


def keccak256_hex(data: BytesLike, *, prefix: bool = True) -> str:
    """Return hex string of Keccak-256 digest (0x-prefixed by default)."""
    return to_hex(keccak256(data), prefix=prefix)


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak(signature), e.g. 'storeBlob(bytes)'."""
    return keccak256(signature.encode("ascii"))[:4]


def event_topic(signature: str) -> bytes:
    """Full 32-byte keccak of an event signature."""
    return keccak256(signature.encode("ascii"))


__all__ = [
    "keccak256",
    "keccak256_hex",
    "function_selector",
    "event_topic",
]
